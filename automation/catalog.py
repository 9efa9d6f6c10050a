"""
Automation — Seed Policy Catalog

Policies shipped with the application. Every entry starts at manual
with zero statistics; the store only inserts entries it doesn't already
hold, so operator choices survive restarts.
"""

from __future__ import annotations

from automation.types import ApprovalLevel, WorkflowPolicy
from recordflow.types import Verb

# (id, name, description, verb, collection)
_SEED = [
    # Reads
    ("get-contracts", "Get Contracts", "Fetch contract list", Verb.GET, "ast_contract"),
    ("get-purchase-orders", "Get Purchase Orders", "Fetch PO list", Verb.GET, "sn_shop_purchase_order"),
    ("get-suppliers", "Get Suppliers", "Fetch supplier list", Verb.GET, "sn_fin_supplier"),
    ("get-vendors", "Get Vendors", "Fetch vendor list", Verb.GET, "core_company"),

    # Creates
    ("create-vendor", "Create Vendor", "Create new vendor", Verb.POST, "core_company"),
    ("create-supplier", "Create Supplier", "Create new supplier", Verb.POST, "sn_fin_supplier"),
    ("create-contract", "Create Contract", "Create new contract", Verb.POST, "ast_contract"),
    ("create-purchase-order", "Create Purchase Order", "Create new PO", Verb.POST, "sn_shop_purchase_order"),
    ("create-expense-line", "Create Expense Line", "Create expense line", Verb.POST, "fm_expense_line"),
    ("create-po-line", "Create PO Line", "Create PO line item", Verb.POST, "sn_shop_purchase_order_line"),
    ("create-asset", "Create Asset", "Create new asset", Verb.POST, "alm_asset"),
    ("create-offering", "Create Service Offering", "Create service offering", Verb.POST, "service_offering"),
    ("create-currency", "Create Currency Instance", "Create currency instance", Verb.POST, "fx_currency2_instance"),

    # Updates
    ("update-vendor", "Update Vendor", "Update vendor record", Verb.PATCH, "core_company"),
    ("update-supplier", "Update Supplier", "Update supplier record", Verb.PATCH, "sn_fin_supplier"),
    ("update-contract", "Update Contract", "Update contract record", Verb.PATCH, "ast_contract"),
    ("update-purchase-order", "Update Purchase Order", "Update PO record", Verb.PATCH, "sn_shop_purchase_order"),
    ("update-expense-line", "Update Expense Line", "Update expense line", Verb.PATCH, "fm_expense_line"),

    # Deletes (never fully automated)
    ("delete-vendor", "Delete Vendor", "Delete vendor record", Verb.DELETE, "core_company"),
    ("delete-supplier", "Delete Supplier", "Delete supplier record", Verb.DELETE, "sn_fin_supplier"),
    ("delete-contract", "Delete Contract", "Delete contract record", Verb.DELETE, "ast_contract"),
    ("delete-purchase-order", "Delete Purchase Order", "Delete PO record", Verb.DELETE, "sn_shop_purchase_order"),
]


def seed_catalog() -> list[WorkflowPolicy]:
    """Fresh copies of the shipped policies, all at manual."""
    return [
        WorkflowPolicy(
            id=policy_id,
            verb=verb,
            collection=collection,
            name=name,
            description=description,
            approval_level=ApprovalLevel.MANUAL,
        )
        for policy_id, name, description, verb, collection in _SEED
    ]


def default_policy_id(verb: Verb, collection: str) -> str:
    """Id for a policy created on demand for a key outside the catalog."""
    return f"{verb.value.lower()}-{collection}"
