"""SEPA Direct Debit batch operations backend for emerchantpay."""
