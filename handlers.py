"""
Request Handlers - Finoria Gestion
Named channels ("create-sale", "generate-invoice-from-quote", ...) dispatched to the
business layer, with a uniform {"success", "data" / "error"} envelope and
data-change notifications.
"""

from typing import Any, Callable, Dict, List, Tuple, Union

from logic import get_logic
from reports import get_dashboard_stats
from utils import export_database, import_database, generate_document_pdf, load_document
from logger import get_logger

logger = get_logger(__name__)

Target = Union[str, Callable[..., Any]]
# (table, action) sends the result data; (table, action, build) sends build(data, args)
Notification = Tuple[Any, ...]

# channel -> (logic method name or callable, generic error message, notifications)
_CHANNELS: Dict[str, Tuple[Target, str, Tuple[Notification, ...]]] = {}
_listeners: List[Callable[[str, str, Any], None]] = []


# ==================== DATA LISTENERS ====================

def register_data_listener(callback: Callable[[str, str, Any], None]):
    if callback not in _listeners:
        _listeners.append(callback)


def unregister_data_listener(callback: Callable[[str, str, Any], None]):
    if callback in _listeners:
        _listeners.remove(callback)


def notify_data_change(table: str, action: str, data: Any = None):
    """Call every listener with (table, action, data); a failing listener does not stop the others"""
    for callback in list(_listeners):
        try:
            callback(table, action, data)
        except Exception:
            logger.exception("Erreur dans un écouteur de données (%s/%s)", table, action)


# ==================== REGISTRY ====================

def register_channel(name: str, target: Target, error_message: str,
                     notifies: Tuple[Notification, ...] = ()):
    _CHANNELS[name] = (target, error_message, notifies)


def get_channels() -> List[str]:
    return sorted(_CHANNELS)


def _envelope(result: Any) -> Dict[str, Any]:
    # (success, message, payload) from BusinessLogic
    if isinstance(result, tuple) and len(result) == 3 and isinstance(result[0], bool):
        success, message, payload = result
        if success:
            return {"success": True, "data": payload, "message": message}
        return {"success": False, "error": message}
    # {success: ...} from export / import
    if isinstance(result, dict) and isinstance(result.get("success"), bool):
        if result["success"]:
            return {"success": True, "data": result}
        return {"success": False, "error": result.get("error") or result.get("message")}
    return {"success": True, "data": result}


def invoke(channel: str, *args) -> Dict[str, Any]:
    """Run a named channel. Never raises: failures come back as {"success": False, "error": ...}"""
    entry = _CHANNELS.get(channel)
    if entry is None:
        return {"success": False, "error": f"Canal inconnu: {channel}"}

    target, error_message, notifies = entry
    try:
        func = getattr(get_logic(), target) if isinstance(target, str) else target
        result = func(*args)
    except Exception:
        logger.exception("Erreur sur le canal %s", channel)
        return {"success": False, "error": error_message}

    response = _envelope(result)
    if response["success"]:
        for notification in notifies:
            table, action = notification[:2]
            data = response.get("data")
            if len(notification) > 2:
                try:
                    data = notification[2](data, args)
                except Exception:
                    logger.exception("Données de notification indisponibles (%s/%s)", table, action)
                    continue
            notify_data_change(table, action, data)
    return response


# ==================== CHANNEL HELPERS ====================

def _can_delete_client(client_id: int) -> Dict[str, Any]:
    can_delete, message = get_logic().can_delete_client(client_id)
    return {"can_delete": can_delete, "message": message}


def _generate_pdf(kind: str, document_id: int, filename: str) -> Tuple[bool, str, Any]:
    document = load_document(kind, document_id)
    if not document:
        return False, "Document non trouvé", None
    company = get_logic().get_enterprise_settings()
    return True, "PDF généré avec succès", generate_document_pdf(document, kind, filename, company)


# ==================== NOTIFICATION PAYLOADS ====================

def _accepted_quote(data: Dict[str, Any], args: tuple) -> Dict[str, Any]:
    return {"id": args[0], "status": "Accepté"}


def _invoiced_sale(data: Dict[str, Any], args: tuple) -> Dict[str, Any]:
    return {"id": args[0], "status": "Facturée"}


def _created_sale(data: Dict[str, Any], args: tuple) -> Dict[str, Any]:
    return get_logic().db.get_sale_by_id(data["sale_id"])


# ==================== CHANNELS ====================

_DEFINITIONS = [
    # Clients
    ("get-clients", "get_clients", "Erreur lors de la récupération des clients", ()),
    ("create-client", "create_client", "Erreur lors de la création du client", (("clients", "create"),)),
    ("update-client", "update_client", "Erreur lors de la mise à jour du client", (("clients", "update"),)),
    ("delete-client", "delete_client", "Erreur lors de la suppression du client", (("clients", "delete"),)),
    ("can-delete-client", _can_delete_client, "Erreur lors de la vérification du client", ()),

    # Products and stock
    ("get-products", "get_products", "Erreur lors de la récupération des produits", ()),
    ("get-product", "get_product_by_id", "Erreur lors de la récupération du produit", ()),
    ("create-product", "create_product", "Erreur lors de la création du produit", (("products", "create"),)),
    ("update-product", "update_product", "Erreur lors de la mise à jour du produit", (("products", "update"),)),
    ("delete-product", "delete_product", "Erreur lors de la suppression du produit", (("products", "delete"),)),
    ("update-product-stock", "update_product_stock", "Erreur lors de la mise à jour du stock",
     (("products", "update"), ("stock_movements", "create"))),
    ("check-product-stock", "check_product_stock", "Erreur lors de la vérification du stock", ()),
    ("get-stock-movements", "get_stock_movements", "Erreur lors de la récupération des mouvements de stock", ()),
    ("create-stock-movement", "create_stock_movement", "Erreur lors de l'enregistrement du mouvement de stock",
     (("stock_movements", "create"), ("products", "update"))),

    # Reference data
    ("get-categories", "get_categories", "Erreur lors de la récupération des catégories", ()),
    ("create-category", "create_category", "Erreur lors de la création de la catégorie", (("categories", "create"),)),
    ("update-category", "update_category", "Erreur lors de la mise à jour de la catégorie", (("categories", "update"),)),
    ("delete-category", "delete_category", "Erreur lors de la suppression de la catégorie", (("categories", "delete"),)),
    ("get-units", "get_units", "Erreur lors de la récupération des unités", ()),
    ("create-unit", "create_unit", "Erreur lors de la création de l'unité", (("units", "create"),)),
    ("update-unit", "update_unit", "Erreur lors de la mise à jour de l'unité", (("units", "update"),)),
    ("delete-unit", "delete_unit", "Erreur lors de la suppression de l'unité", (("units", "delete"),)),
    ("get-tva-rates", "get_tva_rates", "Erreur lors de la récupération des taux de TVA", ()),
    ("create-tva-rate", "create_tva_rate", "Erreur lors de la création du taux de TVA", (("tva", "create"),)),
    ("update-tva-rate", "update_tva_rate", "Erreur lors de la mise à jour du taux de TVA", (("tva", "update"),)),
    ("delete-tva-rate", "delete_tva_rate", "Erreur lors de la suppression du taux de TVA", (("tva", "delete"),)),

    # Sales
    ("get-sales", "get_sales", "Erreur lors de la récupération des ventes", ()),
    ("get-sales-with-items", "get_sales_with_items", "Erreur lors de la récupération des ventes", ()),
    ("get-sale-items", "get_sale_items", "Erreur lors de la récupération des articles de la vente", ()),
    ("create-sale", "create_sale", "Erreur lors de la création de la vente",
     (("sales", "create"), ("products", "update"))),
    ("update-sale-status", "update_sale_status", "Erreur lors de la mise à jour du statut de la vente",
     (("sales", "update"), ("products", "update"))),
    ("delete-sale", "delete_sale", "Erreur lors de la suppression de la vente",
     (("sales", "delete"), ("products", "update"))),

    # Quotes
    ("get-quotes", "get_quotes", "Erreur lors de la récupération des devis", ()),
    ("get-quote-items", "get_quote_items", "Erreur lors de la récupération des articles du devis", ()),
    ("create-quote", "create_quote", "Erreur lors de la création du devis", (("quotes", "create"),)),
    ("update-quote", "update_quote", "Erreur lors de la mise à jour du devis", (("quotes", "update"),)),
    ("update-quote-status", "update_quote_status", "Erreur lors de la mise à jour du statut du devis",
     (("quotes", "update"),)),
    ("delete-quote", "delete_quote", "Erreur lors de la suppression du devis", (("quotes", "delete"),)),
    ("generate-invoice-from-quote", "generate_invoice_from_quote",
     "Erreur lors de la génération de la facture à partir du devis",
     (("invoices", "create"), ("quotes", "update", _accepted_quote), ("sales", "create", _created_sale),
      ("products", "update"))),

    # Invoices
    ("get-invoices", "get_invoices", "Erreur lors de la récupération des factures", ()),
    ("get-invoice-items", "get_invoice_items", "Erreur lors de la récupération des articles de la facture", ()),
    ("create-invoice", "create_invoice", "Erreur lors de la création de la facture", (("invoices", "create"),)),
    ("update-invoice-status", "update_invoice_status", "Erreur lors de la mise à jour du statut de la facture",
     (("invoices", "update"), ("sales", "update"), ("products", "update"))),
    ("generate-invoice-from-sale", "generate_invoice_from_sale",
     "Erreur lors de la génération de la facture à partir de la vente",
     (("invoices", "create"), ("sales", "update", _invoiced_sale))),

    # Credit notes
    ("get-credit-notes", "get_credit_notes", "Erreur lors de la récupération des factures d'avoir", ()),
    ("get-credit-note-items", "get_credit_note_items", "Erreur lors de la récupération des articles de l'avoir", ()),
    ("create-credit-note", "create_credit_note", "Erreur lors de la création de la facture d'avoir",
     (("credit_notes", "create"),)),
    ("generate-credit-note-from-invoice", "generate_credit_note_from_invoice",
     "Erreur lors de la génération de la facture d'avoir", (("credit_notes", "create"),)),
    ("update-credit-note-status", "update_credit_note_status",
     "Erreur lors de la mise à jour du statut de l'avoir",
     (("credit_notes", "update"), ("products", "update"))),

    # Purchase orders
    ("get-purchase-orders", "get_purchase_orders", "Erreur lors de la récupération des bons de commande", ()),
    ("get-purchase-order-items", "get_purchase_order_items",
     "Erreur lors de la récupération des articles du bon de commande", ()),
    ("create-purchase-order", "create_purchase_order", "Erreur lors de la création du bon de commande",
     (("purchase_orders", "create"),)),
    ("generate-purchase-order-from-sale", "generate_purchase_order_from_sale",
     "Erreur lors de la génération du bon de commande", (("purchase_orders", "create"),)),

    # Delivery receipts
    ("get-delivery-receipts", "get_delivery_receipts", "Erreur lors de la récupération des bons de livraison", ()),
    ("get-delivery-receipt", "get_delivery_receipt", "Erreur lors de la récupération du bon de livraison", ()),
    ("get-delivery-receipt-by-sale", "get_delivery_receipt_by_sale",
     "Erreur lors de la récupération du bon de livraison", ()),
    ("create-delivery-receipt", "create_delivery_receipt", "Erreur lors de la création du bon de livraison",
     (("delivery_receipts", "create"),)),
    ("delete-delivery-receipt", "delete_delivery_receipt", "Erreur lors de la suppression du bon de livraison",
     (("delivery_receipts", "delete"),)),

    # Suppliers
    ("get-suppliers", "get_suppliers", "Erreur lors de la récupération des fournisseurs", ()),
    ("create-supplier", "create_supplier", "Erreur lors de la création du fournisseur", (("suppliers", "create"),)),
    ("update-supplier", "update_supplier", "Erreur lors de la mise à jour du fournisseur", (("suppliers", "update"),)),
    ("delete-supplier", "delete_supplier", "Erreur lors de la suppression du fournisseur", (("suppliers", "delete"),)),
    ("get-supplier-orders", "get_supplier_orders", "Erreur lors de la récupération des commandes fournisseurs", ()),
    ("create-supplier-order", "create_supplier_order", "Erreur lors de la création de la commande fournisseur",
     (("supplier_orders", "create"),)),
    ("update-supplier-order", "update_supplier_order", "Erreur lors de la mise à jour de la commande fournisseur",
     (("supplier_orders", "update"),)),
    ("update-supplier-order-status", "update_supplier_order_status",
     "Erreur lors de la mise à jour du statut de la commande", (("supplier_orders", "update"),)),
    ("delete-supplier-order", "delete_supplier_order", "Erreur lors de la suppression de la commande fournisseur",
     (("supplier_orders", "delete"),)),
    ("get-supplier-invoices", "get_supplier_invoices", "Erreur lors de la récupération des factures fournisseurs", ()),
    ("create-supplier-invoice", "create_supplier_invoice", "Erreur lors de la création de la facture fournisseur",
     (("supplier_invoices", "create"),)),
    ("update-supplier-invoice", "update_supplier_invoice", "Erreur lors de la mise à jour de la facture fournisseur",
     (("supplier_invoices", "update"),)),
    ("update-supplier-invoice-status", "update_supplier_invoice_status",
     "Erreur lors de la mise à jour du statut de la facture fournisseur", (("supplier_invoices", "update"),)),
    ("delete-supplier-invoice", "delete_supplier_invoice", "Erreur lors de la suppression de la facture fournisseur",
     (("supplier_invoices", "delete"),)),

    # Reception notes
    ("get-reception-notes", "get_reception_notes", "Erreur lors de la récupération des bons de réception", ()),
    ("get-reception-note", "get_reception_note", "Erreur lors de la récupération du bon de réception", ()),
    ("get-reception-note-by-order", "get_reception_note_by_order",
     "Erreur lors de la récupération du bon de réception", ()),
    ("create-reception-note", "create_reception_note", "Erreur lors de la création du bon de réception",
     (("reception_notes", "create"), ("products", "update"))),
    ("update-reception-note", "update_reception_note", "Erreur lors de la mise à jour du bon de réception",
     (("reception_notes", "update"), ("products", "update"))),
    ("delete-reception-note", "delete_reception_note", "Erreur lors de la suppression du bon de réception",
     (("reception_notes", "delete"), ("products", "update"))),

    # Payments
    ("get-client-payments", "get_client_payments", "Erreur lors de la récupération des paiements", ()),
    ("get-invoice-payments", "get_invoice_payments", "Erreur lors de la récupération des paiements", ()),
    ("create-client-payment", "create_client_payment", "Erreur lors de l'enregistrement du paiement",
     (("client_payments", "create"), ("invoices", "update"))),
    ("update-client-payment", "update_client_payment", "Erreur lors de la mise à jour du paiement",
     (("client_payments", "update"), ("invoices", "update"))),
    ("delete-client-payment", "delete_client_payment", "Erreur lors de la suppression du paiement",
     (("client_payments", "delete"), ("invoices", "update"))),
    ("get-supplier-payments", "get_supplier_payments", "Erreur lors de la récupération des paiements", ()),
    ("create-supplier-payment", "create_supplier_payment", "Erreur lors de l'enregistrement du paiement",
     (("supplier_payments", "create"), ("supplier_invoices", "update"))),
    ("update-supplier-payment", "update_supplier_payment", "Erreur lors de la mise à jour du paiement",
     (("supplier_payments", "update"), ("supplier_invoices", "update"))),
    ("delete-supplier-payment", "delete_supplier_payment", "Erreur lors de la suppression du paiement",
     (("supplier_payments", "delete"), ("supplier_invoices", "update"))),

    # Enterprise settings
    ("get-enterprise-settings", "get_enterprise_settings",
     "Erreur lors de la récupération des paramètres de l'entreprise", ()),
    ("create-enterprise-settings", "create_enterprise_settings",
     "Erreur lors de l'enregistrement des paramètres de l'entreprise", (("companies", "create"),)),
    ("update-enterprise-settings", "update_enterprise_settings",
     "Erreur lors de la mise à jour des paramètres de l'entreprise", (("companies", "update"),)),

    # Dashboard, database, documents
    ("get-dashboard-stats", get_dashboard_stats, "Erreur lors de la récupération des statistiques", ()),
    ("export-database", export_database, "Erreur lors de l'export de la base de données", ()),
    ("import-database", import_database, "Erreur lors de l'import de la base de données", (("database", "import"),)),
    ("generate-pdf", _generate_pdf, "Erreur lors de la génération du PDF", ()),
]

for _name, _target, _message, _notifies in _DEFINITIONS:
    register_channel(_name, _target, _message, _notifies)
