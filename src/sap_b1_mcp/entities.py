# SAP B1 Query MCP Server
# File: entities.py
# Version: v2

"""Static SAP B1 Service Layer entity sets and name resolution helpers."""

from __future__ import annotations

import re
from typing import Optional, Tuple

# Entity sets exposed by the Service Layer (b1s/v1). Generated queries are
# only ever sent against one of these names.
SAP_B1_ENTITY_SETS: Tuple[str, ...] = (
    "AccountCategory",
    "AccountSegmentationCategories",
    "AccountSegmentations",
    "AccrualTypes",
    "Activities",
    "ActivityLocations",
    "ActivityRecipientLists",
    "ActivityStatuses",
    "ActivityTypes",
    "AdditionalExpenses",
    "AlertManagements",
    "AlternateCatNum",
    "ApprovalRequests",
    "ApprovalStages",
    "ApprovalTemplates",
    "AssetCapitalization",
    "AssetCapitalizationCreditMemo",
    "AssetClasses",
    "AssetDepreciationGroups",
    "AssetGroups",
    "AssetManualDepreciation",
    "AssetRetirement",
    "AssetTransfer",
    "Attachments2",
    "AttributeGroups",
    "B1Sessions",
    "BankChargesAllocationCodes",
    "BankPages",
    "Banks",
    "BankStatements",
    "BarCodes",
    "BatchNumberDetails",
    "BEMReplicationPeriods",
    "BillOfExchangeTransactions",
    "BinLocationAttributes",
    "BinLocationFields",
    "BinLocations",
    "BlanketAgreements",
    "BOEDocumentTypes",
    "BOEInstructions",
    "BOEPortfolios",
    "BPFiscalRegistryID",
    "BPPriorities",
    "Branches",
    "BrazilBeverageIndexers",
    "BrazilFuelIndexers",
    "BrazilMultiIndexers",
    "BrazilNumericIndexers",
    "BrazilStringIndexers",
    "BudgetDistributions",
    "Budgets",
    "BudgetScenarios",
    "BusinessPartnerGroups",
    "BusinessPartnerProperties",
    "BusinessPartners",
    "BusinessPlaces",
    "CampaignResponseType",
    "Campaigns",
    "CashDiscounts",
    "CashFlowLineItems",
    "CertificateSeries",
    "ChartOfAccounts",
    "ChecksforPayment",
    "ChooseFromList",
    "ClosingDateProcedure",
    "Cockpits",
    "CommissionGroups",
    "Contacts",
    "ContractTemplates",
    "CorrectionInvoice",
    "CorrectionInvoiceReversal",
    "CorrectionPurchaseInvoice",
    "CorrectionPurchaseInvoiceReversal",
    "CostCenterTypes",
    "CostElements",
    "Countries",
    "CreditCardPayments",
    "CreditCards",
    "CreditNotes",
    "CreditPaymentMethods",
    "Currencies",
    "CustomerEquipmentCards",
    "CustomsDeclaration",
    "CustomsGroups",
    "CycleCountDeterminations",
    "DeductionTaxGroups",
    "DeductionTaxHierarchies",
    "DeductionTaxSubGroups",
    "DeliveryNotes",
    "Departments",
    "Deposits",
    "DepreciationAreas",
    "DepreciationTypePools",
    "DepreciationTypes",
    "DeterminationCriterias",
    "Dimensions",
    "DistributionRules",
    "DNFCodeSetup",
    "DownPayments",
    "Drafts",
    "DunningLetters",
    "DunningTerms",
    "DynamicSystemStrings",
    "ElectronicFileFormats",
    "EmailGroups",
    "EmployeeIDType",
    "EmployeePosition",
    "EmployeeRolesSetup",
    "EmployeesInfo",
    "EmployeeStatus",
    "EmployeeTransfers",
    "EmploymentCategorys",
    "EnhancedDiscountGroups",
    "ExceptionalEvents",
    "ExtendedTranslations",
    "FAAccountDeterminations",
    "FactoringIndicators",
    "FinancialYears",
    "FiscalPrinter",
    "FormattedSearches",
    "FormPreferences",
    "Forms1099",
    "GLAccountAdvancedRules",
    "GoodsReturnRequest",
    "GovPayCodes",
    "Holidays",
    "HouseBankAccounts",
    "IncomingPayments",
    "Industries",
    "IntegrationPackagesConfigure",
    "InternalReconciliations",
    "IntrastatConfiguration",
    "InventoryCountings",
    "InventoryCycles",
    "InventoryGenEntries",
    "InventoryGenExits",
    "InventoryOpeningBalances",
    "InventoryPostings",
    "InventoryTransferRequests",
    "Invoices",
    "ItemGroups",
    "ItemImages",
    "ItemProperties",
    "Items",
    "JournalEntries",
    "JournalEntryDocumentTypes",
    "KnowledgeBaseSolutions",
    "KPIs",
    "LandedCosts",
    "LandedCostsCodes",
    "LegalData",
    "LengthMeasures",
    "LocalEra",
    "Manufacturers",
    "MaterialGroups",
    "MaterialRevaluation",
    "Messages",
    "MobileAddOnSetting",
    "MultiLanguageTranslations",
    "NatureOfAssessees",
    "NCMCodesSetup",
    "NFModels",
    "NFTaxCategories",
    "NotaFiscalCFOP",
    "NotaFiscalCST",
    "NotaFiscalUsage",
    "OccurrenceCodes",
    "Orders",
    "PackagesTypes",
    "PartnersSetups",
    "PaymentBlocks",
    "PaymentDrafts",
    "PaymentReasonCodes",
    "PaymentRunExport",
    "PaymentTermsTypes",
    "PickLists",
    "POSDailySummary",
    "PredefinedTexts",
    "PriceLists",
    "ProductionOrders",
    "ProductTrees",
    "ProfitCenters",
    "ProjectManagements",
    "ProjectManagementTimeSheet",
    "Projects",
    "PurchaseCreditNotes",
    "PurchaseDeliveryNotes",
    "PurchaseDownPayments",
    "PurchaseInvoices",
    "PurchaseOrders",
    "PurchaseQuotations",
    "PurchaseRequests",
    "PurchaseReturns",
    "PurchaseTaxInvoices",
    "QueryAuthGroups",
    "QueryCategories",
    "Queue",
    "Quotations",
    "Relationships",
    "ReportFilter",
    "ReportTypes",
    "ResourceCapacities",
    "ResourceGroups",
    "ResourceProperties",
    "Resources",
    "RetornoCodes",
    "ReturnRequest",
    "Returns",
    "RouteStages",
    "SalesForecast",
    "SalesOpportunities",
    "SalesOpportunityCompetitorsSetup",
    "SalesOpportunityInterestsSetup",
    "SalesOpportunityReasonsSetup",
    "SalesOpportunitySourcesSetup",
    "SalesPersons",
    "SalesStages",
    "SalesTaxAuthorities",
    "SalesTaxAuthoritiesTypes",
    "SalesTaxCodes",
    "SalesTaxInvoices",
    "Sections",
    "SerialNumberDetails",
    "ServiceCallOrigins",
    "ServiceCallProblemSubTypes",
    "ServiceCallProblemTypes",
    "ServiceCalls",
    "ServiceCallSolutionStatus",
    "ServiceCallStatus",
    "ServiceCallTypes",
    "ServiceContracts",
    "ServiceGroups",
    "ShippingTypes",
    "SpecialPrices",
    "States",
    "StockTakings",
    "StockTransferDrafts",
    "StockTransfers",
    "TargetGroups",
    "TaxCodeDeterminations",
    "TaxCodeDeterminationsTCD",
    "TaxInvoiceReport",
    "TaxWebSites",
    "Teams",
    "TerminationReason",
    "Territories",
    "TrackingNotes",
    "TransactionCodes",
    "TransportationDocuments",
    "TSRExceptionalEvents",
    "UnitOfMeasurementGroups",
    "UnitOfMeasurements",
    "UserDefaultGroups",
    "UserFieldsMD",
    "UserKeysMD",
    "UserLanguages",
    "UserObjectsMD",
    "UserPermissionTree",
    "UserQueries",
    "Users",
    "UserTablesMD",
    "ValueMapping",
    "ValueMappingCommunication",
    "VatGroups",
    "VendorPayments",
    "WarehouseLocations",
    "Warehouses",
    "WarehouseSublevelCodes",
    "WebClientBookmarkTiles",
    "WebClientDashboards",
    "WebClientFormSettings",
    "WebClientLaunchpads",
    "WebClientListviewFilters",
    "WebClientNotifications",
    "WebClientPreferences",
    "WebClientRecentActivities",
    "WebClientVariantGroups",
    "WebClientVariants",
    "WeightMeasures",
    "WithholdingTaxCodes",
    "WitholdingTaxDefinition",
    "WizardPaymentMethods",
    "WTaxTypeCodes",
)

_ENTITY_LOOKUP = {name.lower(): name for name in SAP_B1_ENTITY_SETS}

# Entity sets offered to the query generator as the usual targets.
COMMON_ENTITY_SETS: Tuple[str, ...] = (
    "Orders",
    "Invoices",
    "Items",
    "BusinessPartners",
    "DeliveryNotes",
    "PurchaseOrders",
    "CreditNotes",
)

# Entity sets whose field names differ between B1 versions and localizations;
# an "invalid property" error on these earns one retry without the filter.
UNSTABLE_SCHEMA_RESOURCES = frozenset({"Items"})

DEFAULT_ENTITY_SET = "Orders"
OPEN_ORDERS_FILTER = "$filter=DocumentStatus eq 'bost_Open'"

# (keywords that must all appear, entity set, filter override)
_KEYWORD_RULES: Tuple[Tuple[Tuple[str, ...], str, Optional[str]], ...] = (
    (("order", "pending"), "Orders", OPEN_ORDERS_FILTER),
    (("item",), "Items", None),
    (("stock",), "Items", None),
    (("customer",), "BusinessPartners", None),
    (("vendor",), "BusinessPartners", None),
    (("business partner",), "BusinessPartners", None),
    (("invoice",), "Invoices", None),
    (("sales",), "Invoices", None),
    (("order",), "Orders", None),
)


def canonical_entity_set(name: str | None) -> Optional[str]:
    """Return the canonical spelling of a known entity set, else None."""
    if not name:
        return None
    return _ENTITY_LOOKUP.get(str(name).strip().strip("/").lower())


def resolve_by_keywords(text: str) -> Tuple[str, Optional[str]]:
    """Pick an entity set from free text.

    Returns ``(entity_set, filter_override)``. An entity set named verbatim in
    the text wins (longest name first, so "PurchaseOrders" beats "Orders");
    otherwise keyword rules apply, defaulting to Orders.
    """
    lowered = (text or "").lower()
    compact = re.sub(r"[^a-z0-9]", "", lowered)

    for name in sorted(SAP_B1_ENTITY_SETS, key=len, reverse=True):
        if len(name) > 4 and name.lower() in compact:
            return name, None

    for keywords, entity_set, override in _KEYWORD_RULES:
        if all(k in lowered for k in keywords):
            return entity_set, override

    return DEFAULT_ENTITY_SET, None
