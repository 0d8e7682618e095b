"""
crm_sync/mappers/accounts.py

Galaxy customer and affiliate rows -> Zoho Accounts.
"""

from __future__ import annotations

from crm_sync.mappers.field_table import (
    EntityMapping,
    field,
    norm_digits,
    norm_id,
    norm_phone,
    norm_str,
    to_number,
    to_revision,
)

TRADER_ID = "Trader_ID"
ACCOUNT_NAME = "Account_Name"
REV_NUMBER = "Rev_Number"
AFFILIATE_FIELD = "Affiliate_To"

CUSTOMER_MAPPING = EntityMapping(
    name="customer",
    transforms=(
        field("TRDRID", norm_id, TRADER_ID),
        field(("TRDRNAME", "COMPTITLE", "CUSTCODE", "TRDRCODE"), norm_str, ACCOUNT_NAME),
        field("TIN", norm_digits, "Account_AFM"),
        field("TRDSPHONE1", norm_phone, "Phone"),
        field("TRDSSTREET", norm_str, "Billing_Street"),
        field("TRDSSTREET", norm_str, "Shipping_Street"),
        field("PREFDESCR", norm_str, "Billing_State"),
        field("PREFDESCR", norm_str, "Shipping_State"),
        field("CNTRCODE", norm_str, "Billing_Country"),
        field("CNTRCODE", norm_str, "Shipping_Country"),
        field("CAT_EPAGG", norm_str, "Industry"),
        field("CATEGDISCOUNT", norm_str, "Account_Category"),
        field("BALANCE", to_number, "Credit_Limit"),
        field("MAXBALANCE", to_number, "Open_Balance"),
        field("WATT_CY", to_number, "Watt"),
        field("TURNOVER_YTD", to_number, "Turnover_YTD"),
        field("TURNOVER_LTD", to_number, "Turnover_LTD"),
        # Galaxy spells this column TURVOVER_LY.
        field("TURVOVER_LY", to_number, "Turnover_LY"),
        field("THIRDPARTYREVNUM", to_revision, REV_NUMBER),
        field("SALESNAME", norm_str, "SALESNAME"),
    ),
    required_fields=(TRADER_ID, ACCOUNT_NAME),
)

AFFILIATE_MAPPING = EntityMapping(
    name="affiliate",
    transforms=(
        field("AFFILIATES_TRDRID", norm_id, TRADER_ID),
        field("AFF_NAME", norm_str, ACCOUNT_NAME),
        field("AFF_TIN", norm_str, "Account_AFM"),
        field("AFFILIATES_REVNUM", to_revision, REV_NUMBER),
    ),
    required_fields=(TRADER_ID, ACCOUNT_NAME),
)
