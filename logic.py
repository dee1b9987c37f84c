"""
Business Logic Module - Finoria Gestion
Handles tax computation, stock rules, document workflows and payment status
"""

import sqlite3
from typing import Dict, Any, Optional, List, Tuple
from datetime import datetime, timedelta

from config import get_invoicing_settings
from database import get_db, now_str, SERVICE_CATEGORY, MOVEMENT_IN, MOVEMENT_OUT
from logger import get_logger

logger = get_logger(__name__)

Result = Tuple[bool, str, Any]


class BusinessError(Exception):
    """Refusal raised inside a workflow; the message is shown as is"""


def _date_in(days: int) -> str:
    return (datetime.now() + timedelta(days=days)).strftime("%Y-%m-%d %H:%M:%S")


def _fmt_qty(value: float) -> str:
    return f"{value:g}"


class BusinessLogic:
    """Main business logic handler"""

    def __init__(self):
        self.db = get_db()

    def _fail(self, conn: sqlite3.Connection, error: Exception, message: str,
              unique_message: str = None) -> Result:
        """Roll back and turn an exception into a (False, message, None) result"""
        conn.rollback()
        if isinstance(error, BusinessError):
            logger.warning(str(error))
            return False, str(error), None
        if isinstance(error, sqlite3.IntegrityError):
            text = str(error)
            if unique_message and "UNIQUE" in text:
                logger.warning("%s (%s)", unique_message, text)
                return False, unique_message, None
            if "FOREIGN KEY" in text:
                logger.warning("Violation de clé étrangère: %s", text)
                return False, "Référence invalide: un élément lié est introuvable", None
        logger.exception(message)
        return False, message, None

    # ==================== TAX COMPUTATION ====================

    def get_fodec_rate(self) -> float:
        """FODEC rate of the company, else the configured default"""
        company = self.db.get_company_settings()
        if company and company.get('fodec_rate') is not None:
            return float(company['fodec_rate'])
        return get_invoicing_settings()['taux_fodec']

    def calculate_document_totals(self, items: List[Dict[str, Any]],
                                  fodec_rate: float = None) -> Dict[str, Any]:
        """
        Price document lines with per-product TVA and FODEC.
        Every line figure is rounded to the millime (3 decimals).
        FODEC is applied on the net line, TVA on net line + FODEC.
        """
        if fodec_rate is None:
            fodec_rate = self.get_fodec_rate()

        lines = []
        subtotal = discount_total = amount = fodec_total = tax_total = 0.0

        for item in items:
            product = self.db.get_product_by_id(item['product_id'])
            if not product:
                raise BusinessError(f"Produit introuvable (id={item['product_id']})")

            quantity = float(item.get('quantity') or 0)
            unit_price = item.get('unit_price')
            if unit_price is None:
                unit_price = product.get('selling_price_ht') or 0.0
            unit_price = float(unit_price)
            discount = float(item.get('discount') or 0)

            gross = round(unit_price * quantity, 3)
            line_discount = round(gross * discount / 100, 3)
            line_total = round(gross - line_discount, 3)
            line_fodec = round(line_total * fodec_rate / 100, 3) if product.get('fodec_applicable') else 0.0
            tva_rate = product.get('tva_rate') or 0.0
            line_tva = round((line_total + line_fodec) * tva_rate / 100, 3)

            subtotal += gross
            discount_total += line_discount
            amount += line_total
            fodec_total += line_fodec
            tax_total += line_tva

            lines.append({
                'product_id': product['id'],
                'product_name': item.get('product_name') or product['name'],
                'quantity': quantity,
                'unit_price': unit_price,
                'discount': discount,
                'total_price': line_total,
                'tva_rate': tva_rate,
                'fodec_amount': line_fodec,
                'tax_amount': line_tva,
                'is_service': product['category'] == SERVICE_CATEGORY,
            })

        amount = round(amount, 3)
        fodec_total = round(fodec_total, 3)
        tax_total = round(tax_total, 3)
        return {
            'subtotal': round(subtotal, 3),
            'discount_amount': round(discount_total, 3),
            'amount': amount,
            'fodec_amount': fodec_total,
            'tax_amount': tax_total,
            'total_amount': round(amount + fodec_total + tax_total, 3),
            'items': lines,
        }

    # ==================== STOCK MANAGEMENT ====================

    def check_product_stock(self, product_id: int, requested: float) -> Dict[str, Any]:
        product = self.db.get_product_by_id(product_id)
        if not product:
            return {'available': False, 'current_stock': 0.0, 'is_service': False}
        if product['category'] == SERVICE_CATEGORY:
            return {'available': True, 'current_stock': product['stock'] or 0.0, 'is_service': True}
        current = product['stock'] or 0.0
        return {'available': current >= requested, 'current_stock': current, 'is_service': False}

    def _ensure_stock(self, lines: List[Dict[str, Any]]):
        """Raise BusinessError when a physical product lacks stock (quantities summed per product)"""
        needed: Dict[int, float] = {}
        for line in lines:
            needed[line['product_id']] = needed.get(line['product_id'], 0.0) + float(line['quantity'])

        for product_id, quantity in needed.items():
            check = self.check_product_stock(product_id, quantity)
            if not check['available']:
                product = self.db.get_product_by_id(product_id)
                name = product['name'] if product else f"#{product_id}"
                raise BusinessError(
                    f"Stock insuffisant pour {name}. Stock actuel: {_fmt_qty(check['current_stock'])}")

    def _move_stock(self, lines: List[Dict[str, Any]], movement_type: str, source_type: str,
                    source_id: int, reference: str, reason: str,
                    quantity_key: str = 'quantity'):
        """Log one movement per line inside the caller's transaction"""
        for line in lines:
            quantity = float(line.get(quantity_key) or 0)
            if quantity <= 0:
                continue
            self.db.log_stock_movement(
                product_id=line['product_id'],
                movement_type=movement_type,
                quantity=quantity,
                source_type=source_type,
                source_id=source_id,
                reference=reference,
                reason=reason,
                commit=False
            )

    def update_product_stock(self, product_id: int, stock: float) -> Result:
        """Set an absolute stock level, recorded as an adjustment movement"""
        conn = self.db._get_connection()
        try:
            product = self.db.get_product_by_id(product_id)
            if not product:
                raise BusinessError("Produit non trouvé")
            if product['category'] == SERVICE_CATEGORY:
                raise BusinessError("Un service n'a pas de stock")

            difference = float(stock) - (product['stock'] or 0.0)
            conn.execute("BEGIN TRANSACTION")
            if difference:
                self.db.log_stock_movement(
                    product_id=product_id,
                    movement_type=MOVEMENT_IN if difference > 0 else MOVEMENT_OUT,
                    quantity=abs(difference),
                    source_type='adjustment',
                    reason='Ajustement manuel',
                    commit=False
                )
            conn.commit()
            return True, "Stock mis à jour", float(stock)
        except Exception as e:
            return self._fail(conn, e, "Erreur lors de la mise à jour du stock")

    def create_stock_movement(self, movement: Dict[str, Any]) -> Result:
        """Manual movement: {product_id, movement_type IN/OUT, quantity, reference, reason}"""
        conn = self.db._get_connection()
        try:
            movement_type = movement.get('movement_type')
            if movement_type not in (MOVEMENT_IN, MOVEMENT_OUT):
                raise BusinessError("Type de mouvement invalide (IN ou OUT)")
            quantity = float(movement.get('quantity') or 0)
            if quantity <= 0:
                raise BusinessError("La quantité doit être positive")
            if not self.db.get_product_by_id(movement['product_id']):
                raise BusinessError("Produit non trouvé")

            conn.execute("BEGIN TRANSACTION")
            movement_id = self.db.log_stock_movement(
                product_id=movement['product_id'],
                movement_type=movement_type,
                quantity=quantity,
                source_type=movement.get('source_type') or 'manual',
                source_id=movement.get('source_id'),
                reference=movement.get('reference'),
                reason=movement.get('reason'),
                commit=False
            )
            conn.commit()
            return True, "Mouvement de stock enregistré", movement_id
        except Exception as e:
            return self._fail(conn, e, "Erreur lors de l'enregistrement du mouvement de stock")

    def get_stock_movements(self, product_id: int = None) -> List[Dict[str, Any]]:
        return self.db.get_stock_movements(product_id)

    # ==================== QUOTES ====================

    def create_quote(self, quote: Dict[str, Any]) -> Result:
        conn = self.db._get_connection()
        try:
            if not self.db.get_client_by_id(quote.get('client_id')):
                raise BusinessError("Client non trouvé")
            totals = self.calculate_document_totals(quote.get('items') or [])

            conn.execute("BEGIN TRANSACTION")
            number = quote.get('number') or self.db.generate_document_number('quote')
            quote_id = self.db.insert_quote(
                number=number,
                client_id=quote['client_id'],
                amount=totals['amount'],
                tax_amount=totals['tax_amount'],
                fodec_amount=totals['fodec_amount'],
                total_amount=totals['total_amount'],
                status=quote.get('status') or 'En attente',
                issue_date=quote.get('issue_date'),
                due_date=quote.get('due_date'),
                commit=False
            )
            self.db.insert_items("quotes", quote_id, totals['items'], commit=False)
            conn.commit()
            self.db.log_action("Création devis", number)
            return True, "Devis créé avec succès", quote_id
        except Exception as e:
            return self._fail(conn, e, "Erreur lors de la création du devis",
                              unique_message="Un devis avec ce numéro existe déjà")

    def update_quote(self, quote_id: int, quote: Dict[str, Any]) -> Result:
        conn = self.db._get_connection()
        try:
            existing = self.db.get_quote_by_id(quote_id)
            if not existing:
                raise BusinessError("Devis non trouvé")
            if existing['status'] == 'Accepté':
                raise BusinessError("Un devis accepté ne peut plus être modifié")

            items = quote.get('items')
            totals = self.calculate_document_totals(items) if items is not None else None

            conn.execute("BEGIN TRANSACTION")
            fields = {k: quote[k] for k in ('number', 'client_id', 'status', 'issue_date', 'due_date')
                      if quote.get(k) is not None}
            if totals:
                fields.update(amount=totals['amount'], tax_amount=totals['tax_amount'],
                              fodec_amount=totals['fodec_amount'], total_amount=totals['total_amount'])
            self.db.update_record("quotes", quote_id, commit=False, **fields)
            if totals:
                self.db.delete_items("quotes", quote_id, commit=False)
                self.db.insert_items("quotes", quote_id, totals['items'], commit=False)
            conn.commit()
            return True, "Devis mis à jour", quote_id
        except Exception as e:
            return self._fail(conn, e, "Erreur lors de la mise à jour du devis",
                              unique_message="Un devis avec ce numéro existe déjà")

    def update_quote_status(self, quote_id: int, status: str) -> Result:
        quote = self.db.get_quote_by_id(quote_id)
        if not quote:
            return False, "Devis non trouvé", None
        if quote['status'] == 'Accepté':
            return False, "Ce devis a déjà été converti en facture", None
        self.db.update_record("quotes", quote_id, status=status)
        return True, "Statut du devis mis à jour", quote_id

    def delete_quote(self, quote_id: int) -> Result:
        quote = self.db.get_quote_by_id(quote_id)
        if not quote:
            return False, "Devis non trouvé", None
        linked = self.db._count("SELECT COUNT(*) FROM invoices WHERE quote_id = ?", (quote_id,))
        if linked:
            return False, "Impossible de supprimer ce devis car il a été converti en facture", None
        self.db.delete_quote(quote_id)
        self.db.log_action("Suppression devis", quote['number'])
        return True, "Devis supprimé", quote_id

    def get_quotes(self) -> List[Dict[str, Any]]:
        return self.db.get_all_quotes()

    def get_quote_items(self, quote_id: int) -> List[Dict[str, Any]]:
        return self.db.get_items("quotes", quote_id)

    # ==================== QUOTE -> INVOICE CONVERSION ====================

    def generate_invoice_from_quote(self, quote_id: int) -> Result:
        """
        Convert a quote into a sale and an invoice in ONE transaction:
        stock check, totals (TVA + FODEC), sale + OUT movements,
        FAC- numbered invoice, quote marked 'Accepté'.
        Returns (success, message, {invoice_id, invoice_number, sale_id}).
        """
        conn = self.db._get_connection()
        try:
            quote = self.db.get_quote_by_id(quote_id)
            if not quote:
                raise BusinessError("Devis non trouvé")
            if quote['status'] == 'Accepté':
                raise BusinessError("Ce devis a déjà été converti en facture")

            quote_items = self.db.get_items("quotes", quote_id)
            if not quote_items:
                raise BusinessError("Le devis ne contient aucun article")

            totals = self.calculate_document_totals(quote_items)
            self._ensure_stock([line for line in totals['items'] if not line['is_service']])

            delay = get_invoicing_settings()['delai_paiement_jours']

            conn.execute("BEGIN TRANSACTION")

            sale_id = self.db.insert_sale(
                client_id=quote['client_id'],
                total_amount=totals['total_amount'],
                tax_amount=totals['tax_amount'],
                discount_amount=totals['discount_amount'],
                fodec_amount=totals['fodec_amount'],
                status='Facturée',
                commit=False
            )
            self.db.insert_items("sales", sale_id, totals['items'], commit=False)

            invoice_number = self.db.generate_document_number('invoice')
            self._move_stock(totals['items'], MOVEMENT_OUT, 'sale', sale_id, invoice_number, 'Vente')

            invoice_id = self.db.insert_invoice(
                number=invoice_number,
                client_id=quote['client_id'],
                amount=totals['amount'],
                tax_amount=totals['tax_amount'],
                fodec_amount=totals['fodec_amount'],
                total_amount=totals['total_amount'],
                sale_id=sale_id,
                quote_id=quote_id,
                status='En attente',
                due_date=_date_in(delay),
                commit=False
            )
            self.db.insert_items("invoices", invoice_id, totals['items'], commit=False)

            self.db.update_record("quotes", quote_id, commit=False, status='Accepté')

            conn.commit()
            self.db.log_action("Conversion devis", f"{quote['number']} -> {invoice_number}")
            logger.info("Devis %s converti en facture %s", quote['number'], invoice_number)
            return True, "Facture générée avec succès", {
                'invoice_id': invoice_id,
                'invoice_number': invoice_number,
                'sale_id': sale_id,
            }
        except Exception as e:
            return self._fail(conn, e, "Erreur lors de la génération de la facture à partir du devis")

    # ==================== SALES ====================

    def create_sale(self, sale: Dict[str, Any]) -> Result:
        conn = self.db._get_connection()
        try:
            if not self.db.get_client_by_id(sale.get('client_id')):
                raise BusinessError("Client non trouvé")
            items = sale.get('items') or []
            if not items:
                raise BusinessError("La vente doit contenir au moins un article")

            totals = self.calculate_document_totals(items)
            self._ensure_stock([line for line in totals['items'] if not line['is_service']])

            conn.execute("BEGIN TRANSACTION")
            sale_id = self.db.insert_sale(
                client_id=sale['client_id'],
                total_amount=totals['total_amount'],
                tax_amount=totals['tax_amount'],
                discount_amount=totals['discount_amount'],
                fodec_amount=totals['fodec_amount'],
                status=sale.get('status') or 'Confirmé',
                sale_date=sale.get('sale_date'),
                commit=False
            )
            self.db.insert_items("sales", sale_id, totals['items'], commit=False)
            self._move_stock(totals['items'], MOVEMENT_OUT, 'sale', sale_id, f"SALE-{sale_id}", 'Vente')
            conn.commit()
            self.db.log_action("Création vente", f"SALE-{sale_id}")
            return True, "Vente enregistrée avec succès", sale_id
        except Exception as e:
            return self._fail(conn, e, "Erreur lors de la création de la vente")

    def update_sale_status(self, sale_id: int, status: str) -> Result:
        conn = self.db._get_connection()
        try:
            sale = self.db.get_sale_by_id(sale_id)
            if not sale:
                raise BusinessError("Vente non trouvée")
            if sale['status'] == 'Annulée' and status != 'Annulée':
                raise BusinessError("Une vente annulée ne peut pas être réactivée")

            conn.execute("BEGIN TRANSACTION")
            if status == 'Annulée' and sale['status'] != 'Annulée':
                self._move_stock(self.db.get_items("sales", sale_id), MOVEMENT_IN,
                                 'sale_cancellation', sale_id, f"SALE-{sale_id}", 'Vente annulée')
            self.db.update_record("sales", sale_id, commit=False, status=status)
            conn.commit()
            if status == 'Annulée':
                self.db.log_action("Annulation vente", f"SALE-{sale_id}")
            return True, "Statut de la vente mis à jour", sale_id
        except Exception as e:
            return self._fail(conn, e, "Erreur lors de la mise à jour du statut de la vente")

    def delete_sale(self, sale_id: int) -> Result:
        conn = self.db._get_connection()
        try:
            sale = self.db.get_sale_by_id(sale_id)
            if not sale:
                raise BusinessError("Vente non trouvée")
            allowed, message = self.db.can_delete_sale(sale_id)
            if not allowed:
                raise BusinessError(message)

            conn.execute("BEGIN TRANSACTION")
            if sale['status'] != 'Annulée':
                self._move_stock(self.db.get_items("sales", sale_id), MOVEMENT_IN,
                                 'sale_deletion', sale_id, f"SALE-{sale_id}", 'Vente supprimée')
            self.db.delete_sale(sale_id, commit=False)
            conn.commit()
            self.db.log_action("Suppression vente", f"SALE-{sale_id}")
            return True, "Vente supprimée", sale_id
        except Exception as e:
            return self._fail(conn, e, "Erreur lors de la suppression de la vente")

    def get_sales(self) -> List[Dict[str, Any]]:
        return self.db.get_all_sales()

    def get_sales_with_items(self) -> List[Dict[str, Any]]:
        return self.db.get_all_sales(with_items=True)

    def get_sale_items(self, sale_id: int) -> List[Dict[str, Any]]:
        return self.db.get_items("sales", sale_id)

    # ==================== INVOICES ====================

    def create_invoice(self, invoice: Dict[str, Any]) -> Result:
        conn = self.db._get_connection()
        try:
            sale = None
            if invoice.get('sale_id'):
                sale = self.db.get_sale_by_id(invoice['sale_id'])
                if not sale:
                    raise BusinessError("Vente non trouvée")

            if sale:
                client_id = invoice.get('client_id') or sale['client_id']
                lines = self.db.get_items("sales", sale['id'])
                fodec = sale['fodec_amount'] or 0.0
                amounts = {
                    'amount': round(sale['total_amount'] - sale['tax_amount'] - fodec, 3),
                    'tax_amount': sale['tax_amount'],
                    'fodec_amount': fodec,
                    'total_amount': sale['total_amount'],
                }
            else:
                client_id = invoice.get('client_id')
                totals = self.calculate_document_totals(invoice.get('items') or [])
                lines = totals['items']
                amounts = {k: totals[k] for k in ('amount', 'tax_amount', 'fodec_amount', 'total_amount')}

            if not self.db.get_client_by_id(client_id):
                raise BusinessError("Client non trouvé")

            delay = get_invoicing_settings()['delai_paiement_jours']

            conn.execute("BEGIN TRANSACTION")
            number = invoice.get('number') or self.db.generate_document_number('invoice')
            invoice_id = self.db.insert_invoice(
                number=number,
                client_id=client_id,
                sale_id=sale['id'] if sale else None,
                quote_id=invoice.get('quote_id'),
                status=invoice.get('status') or 'En attente',
                issue_date=invoice.get('issue_date'),
                due_date=invoice.get('due_date') or _date_in(delay),
                commit=False,
                **amounts
            )
            self.db.insert_items("invoices", invoice_id, lines, commit=False)
            conn.commit()
            self.db.log_action("Création facture", number)
            return True, "Facture créée avec succès", invoice_id
        except Exception as e:
            return self._fail(conn, e, "Erreur lors de la création de la facture",
                              unique_message="Une facture avec ce numéro existe déjà")

    def generate_invoice_from_sale(self, sale_id: int) -> Result:
        conn = self.db._get_connection()
        try:
            sale = self.db.get_sale_by_id(sale_id)
            if not sale:
                raise BusinessError("Vente non trouvée")
            if sale['status'] == 'Annulée':
                raise BusinessError("Impossible de facturer une vente annulée")
            if self.db.get_invoices_for_sale(sale_id):
                raise BusinessError("Cette vente a déjà été facturée")

            fodec = sale['fodec_amount'] or 0.0
            delay = get_invoicing_settings()['delai_paiement_jours']

            conn.execute("BEGIN TRANSACTION")
            number = self.db.generate_document_number('invoice')
            invoice_id = self.db.insert_invoice(
                number=number,
                client_id=sale['client_id'],
                amount=round(sale['total_amount'] - sale['tax_amount'] - fodec, 3),
                tax_amount=sale['tax_amount'],
                fodec_amount=fodec,
                total_amount=sale['total_amount'],
                sale_id=sale_id,
                status='En attente',
                due_date=_date_in(delay),
                commit=False
            )
            self.db.insert_items("invoices", invoice_id, self.db.get_items("sales", sale_id), commit=False)
            self.db.update_record("sales", sale_id, commit=False, status='Facturée')
            conn.commit()
            self.db.log_action("Facturation vente", f"SALE-{sale_id} -> {number}")
            return True, "Facture générée avec succès", {'invoice_id': invoice_id, 'invoice_number': number}
        except Exception as e:
            return self._fail(conn, e, "Erreur lors de la génération de la facture à partir de la vente")

    def update_invoice_status(self, invoice_id: int, status: str) -> Result:
        """Cancelling an invoice also cancels its sale and puts the goods back in stock"""
        conn = self.db._get_connection()
        try:
            invoice = self.db.get_invoice_by_id(invoice_id)
            if not invoice:
                raise BusinessError("Facture non trouvée")

            conn.execute("BEGIN TRANSACTION")
            if status == 'Annulée' and invoice['status'] != 'Annulée' and invoice['sale_id']:
                sale = self.db.get_sale_by_id(invoice['sale_id'])
                if sale and sale['status'] != 'Annulée':
                    self._move_stock(self.db.get_items("sales", sale['id']), MOVEMENT_IN,
                                     'invoice_cancellation', sale['id'],
                                     f"SALE-{sale['id']}", 'Vente annulée')
                    self.db.update_record("sales", sale['id'], commit=False, status='Annulée')
            self.db.update_invoice_status(invoice_id, status, commit=False)
            conn.commit()
            if status == 'Annulée':
                self.db.log_action("Annulation facture", invoice['number'])
            return True, "Statut de la facture mis à jour", invoice_id
        except Exception as e:
            return self._fail(conn, e, "Erreur lors de la mise à jour du statut de la facture")

    def get_invoices(self) -> List[Dict[str, Any]]:
        return self.db.get_all_invoices()

    def get_invoice(self, invoice_id: int) -> Optional[Dict[str, Any]]:
        invoice = self.db.get_invoice_by_id(invoice_id)
        if invoice:
            invoice['items'] = self.db.get_items("invoices", invoice_id)
        return invoice

    def get_invoice_items(self, invoice_id: int) -> List[Dict[str, Any]]:
        return self.db.get_items("invoices", invoice_id)

    # ==================== CREDIT NOTES ====================

    def create_credit_note(self, credit_note: Dict[str, Any]) -> Result:
        conn = self.db._get_connection()
        try:
            reason = (credit_note.get('reason') or '').strip()
            if not reason:
                raise BusinessError("Le motif de l'avoir est requis")
            invoice = self.db.get_invoice_by_id(credit_note.get('original_invoice_id'))
            if not invoice:
                raise BusinessError("Facture non trouvée")

            totals = self.calculate_document_totals(credit_note.get('items') or [])

            conn.execute("BEGIN TRANSACTION")
            number = credit_note.get('number') or self.db.generate_document_number('credit_note')
            credit_note_id = self.db.insert_credit_note(
                number=number,
                original_invoice_id=invoice['id'],
                client_id=credit_note.get('client_id') or invoice['client_id'],
                amount=totals['amount'],
                tax_amount=totals['tax_amount'],
                fodec_amount=totals['fodec_amount'],
                total_amount=totals['total_amount'],
                reason=reason,
                status=credit_note.get('status') or 'En attente',
                due_date=credit_note.get('due_date') or now_str(),
                commit=False
            )
            self.db.insert_items("credit_notes", credit_note_id, totals['items'], commit=False)
            conn.commit()
            self.db.log_action("Création avoir", f"{number} ({invoice['number']})")
            return True, "Facture d'avoir créée avec succès", credit_note_id
        except Exception as e:
            return self._fail(conn, e, "Erreur lors de la création de la facture d'avoir",
                              unique_message="Une facture d'avoir avec ce numéro existe déjà")

    def generate_credit_note_from_invoice(self, invoice_id: int, reason: str = None) -> Result:
        conn = self.db._get_connection()
        try:
            invoice = self.db.get_invoice_by_id(invoice_id)
            if not invoice:
                raise BusinessError("Facture non trouvée")
            reason = (reason or '').strip() or f"Avoir sur facture {invoice['number']}"

            conn.execute("BEGIN TRANSACTION")
            number = self.db.generate_document_number('credit_note')
            credit_note_id = self.db.insert_credit_note(
                number=number,
                original_invoice_id=invoice_id,
                client_id=invoice['client_id'],
                amount=invoice['amount'],
                tax_amount=invoice['tax_amount'],
                fodec_amount=invoice['fodec_amount'] or 0.0,
                total_amount=invoice['total_amount'],
                reason=reason,
                status='En attente',
                due_date=now_str(),
                commit=False
            )
            self.db.insert_items("credit_notes", credit_note_id,
                                 self.db.get_items("invoices", invoice_id), commit=False)
            conn.commit()
            self.db.log_action("Création avoir", f"{number} ({invoice['number']})")
            return True, "Facture d'avoir générée avec succès", {
                'credit_note_id': credit_note_id,
                'credit_note_number': number,
            }
        except Exception as e:
            return self._fail(conn, e, "Erreur lors de la génération de la facture d'avoir")

    def update_credit_note_status(self, credit_note_id: int, status: str) -> Result:
        """First confirmation puts the returned goods back in stock"""
        conn = self.db._get_connection()
        try:
            credit_note = self.db.get_credit_note_by_id(credit_note_id)
            if not credit_note:
                raise BusinessError("Facture d'avoir non trouvée")

            conn.execute("BEGIN TRANSACTION")
            if status == 'Confirmée' and credit_note['status'] != 'Confirmée':
                self._move_stock(self.db.get_items("credit_notes", credit_note_id), MOVEMENT_IN,
                                 'credit_note', credit_note_id, f"CREDIT-{credit_note_id}",
                                 'Retour de marchandise')
            self.db.update_record("credit_notes", credit_note_id, commit=False, status=status)
            conn.commit()
            return True, "Statut de l'avoir mis à jour", credit_note_id
        except Exception as e:
            return self._fail(conn, e, "Erreur lors de la mise à jour du statut de l'avoir")

    def get_credit_notes(self) -> List[Dict[str, Any]]:
        return self.db.get_all_credit_notes()

    def get_credit_note_items(self, credit_note_id: int) -> List[Dict[str, Any]]:
        return self.db.get_items("credit_notes", credit_note_id)

    # ==================== PURCHASE ORDERS ====================

    def create_purchase_order(self, purchase_order: Dict[str, Any]) -> Result:
        conn = self.db._get_connection()
        try:
            if not self.db.get_client_by_id(purchase_order.get('client_id')):
                raise BusinessError("Client non trouvé")
            totals = self.calculate_document_totals(purchase_order.get('items') or [])
            delay = get_invoicing_settings()['delai_livraison_jours']

            conn.execute("BEGIN TRANSACTION")
            number = purchase_order.get('number') or self.db.generate_document_number('purchase_order')
            po_id = self.db.insert_purchase_order(
                number=number,
                client_id=purchase_order['client_id'],
                sale_id=purchase_order.get('sale_id'),
                amount=totals['amount'],
                tax_amount=totals['tax_amount'],
                total_amount=totals['total_amount'],
                delivery_date=purchase_order.get('delivery_date') or _date_in(delay),
                commit=False
            )
            self.db.insert_items("purchase_orders", po_id, totals['items'], commit=False)
            conn.commit()
            return True, "Bon de commande créé avec succès", po_id
        except Exception as e:
            return self._fail(conn, e, "Erreur lors de la création du bon de commande",
                              unique_message="Un bon de commande avec ce numéro existe déjà")

    def generate_purchase_order_from_sale(self, sale_id: int, delivery_date: str = None) -> Result:
        conn = self.db._get_connection()
        try:
            sale = self.db.get_sale_by_id(sale_id)
            if not sale:
                raise BusinessError("Vente non trouvée")
            sale_items = self.db.get_items("sales", sale_id)
            tax = self.calculate_document_totals(sale_items)['tax_amount']
            delay = get_invoicing_settings()['delai_livraison_jours']

            conn.execute("BEGIN TRANSACTION")
            number = self.db.generate_document_number('purchase_order')
            po_id = self.db.insert_purchase_order(
                number=number,
                client_id=sale['client_id'],
                sale_id=sale_id,
                amount=round(sale['total_amount'] - tax, 3),
                tax_amount=tax,
                total_amount=sale['total_amount'],
                delivery_date=delivery_date or _date_in(delay),
                commit=False
            )
            self.db.insert_items("purchase_orders", po_id, sale_items, commit=False)
            conn.commit()
            return True, "Bon de commande généré avec succès", {
                'purchase_order_id': po_id,
                'purchase_order_number': number,
            }
        except Exception as e:
            return self._fail(conn, e, "Erreur lors de la génération du bon de commande")

    def get_purchase_orders(self) -> List[Dict[str, Any]]:
        return self.db.get_all_purchase_orders()

    def get_purchase_order_items(self, purchase_order_id: int) -> List[Dict[str, Any]]:
        return self.db.get_items("purchase_orders", purchase_order_id)

    # ==================== DELIVERY RECEIPTS ====================

    def create_delivery_receipt(self, receipt: Dict[str, Any]) -> Result:
        conn = self.db._get_connection()
        try:
            sale = self.db.get_sale_by_id(receipt.get('sale_id'))
            if not sale:
                raise BusinessError("Vente non trouvée")
            items = receipt.get('items') or self.db.get_items("sales", sale['id'])

            conn.execute("BEGIN TRANSACTION")
            number = receipt.get('delivery_number') or self.db.generate_document_number('delivery_receipt')
            receipt_id = self.db.insert_delivery_receipt(
                sale_id=sale['id'],
                delivery_number=number,
                driver_name=receipt.get('driver_name'),
                vehicle_registration=receipt.get('vehicle_registration'),
                delivery_date=receipt.get('delivery_date'),
                items=items,
                commit=False
            )
            conn.commit()
            return True, "Bon de livraison créé avec succès", receipt_id
        except Exception as e:
            return self._fail(conn, e, "Erreur lors de la création du bon de livraison",
                              unique_message="Un bon de livraison avec ce numéro existe déjà")

    def get_delivery_receipts(self) -> List[Dict[str, Any]]:
        return self.db.get_all_delivery_receipts()

    def get_delivery_receipt(self, receipt_id: int) -> Optional[Dict[str, Any]]:
        return self.db.get_delivery_receipt_by_id(receipt_id)

    def get_delivery_receipt_by_sale(self, sale_id: int) -> Optional[Dict[str, Any]]:
        return self.db.get_delivery_receipt_by_sale(sale_id)

    def delete_delivery_receipt(self, receipt_id: int) -> Result:
        if not self.db.delete_delivery_receipt(receipt_id):
            return False, "Bon de livraison non trouvé", None
        return True, "Bon de livraison supprimé", receipt_id

    # ==================== SUPPLIERS ====================

    def create_supplier(self, supplier: Dict[str, Any]) -> Result:
        if not (supplier.get('name') or '').strip():
            return False, "Le nom du fournisseur est requis", None
        supplier_id = self.db.create_supplier(
            name=supplier['name'].strip(),
            email=supplier.get('email'),
            phone=supplier.get('phone'),
            address=supplier.get('address'),
            company=supplier.get('company'),
            tax_id=supplier.get('tax_id')
        )
        return True, "Fournisseur créé avec succès", supplier_id

    def update_supplier(self, supplier_id: int, supplier: Dict[str, Any]) -> Result:
        if not self.db.get_supplier_by_id(supplier_id):
            return False, "Fournisseur non trouvé", None
        self.db.update_supplier(supplier_id, **supplier)
        return True, "Fournisseur mis à jour", supplier_id

    def delete_supplier(self, supplier_id: int) -> Result:
        allowed, message = self.db.can_delete_supplier(supplier_id)
        if not allowed:
            return False, message, None
        self.db.delete_supplier(supplier_id)
        return True, "Fournisseur supprimé", supplier_id

    def get_suppliers(self) -> List[Dict[str, Any]]:
        return self.db.get_all_suppliers()

    # ==================== SUPPLIER ORDERS ====================

    def _supplier_totals(self, document: Dict[str, Any]) -> Dict[str, Any]:
        """Purchase side: TVA on lines, no FODEC"""
        items = document.get('items') or []
        if items:
            return self.calculate_document_totals(items, fodec_rate=0.0)
        tax = float(document.get('tax_amount') or 0)
        total = float(document.get('total_amount') or 0)
        amount = float(document.get('amount') or round(total - tax, 3))
        return {'amount': amount, 'tax_amount': tax, 'total_amount': total, 'items': []}

    def create_supplier_order(self, order: Dict[str, Any]) -> Result:
        """No stock effect: goods enter through reception notes"""
        conn = self.db._get_connection()
        try:
            if not self.db.get_supplier_by_id(order.get('supplier_id')):
                raise BusinessError("Fournisseur non trouvé")
            totals = self._supplier_totals(order)

            conn.execute("BEGIN TRANSACTION")
            number = order.get('order_number') or self.db.generate_document_number('supplier_order')
            order_id = self.db.insert_supplier_order(
                supplier_id=order['supplier_id'],
                order_number=number,
                total_amount=totals['total_amount'],
                tax_amount=totals['tax_amount'],
                status=order.get('status'),
                order_date=order.get('order_date'),
                delivery_date=order.get('delivery_date'),
                commit=False
            )
            self.db.insert_items("supplier_orders", order_id, totals['items'], commit=False)
            conn.commit()
            self.db.log_action("Création commande fournisseur", number)
            return True, "Commande fournisseur créée avec succès", order_id
        except Exception as e:
            return self._fail(conn, e, "Erreur lors de la création de la commande fournisseur",
                              unique_message="Une commande avec ce numéro existe déjà")

    def update_supplier_order(self, order_id: int, order: Dict[str, Any]) -> Result:
        conn = self.db._get_connection()
        try:
            if not self.db.get_supplier_order_by_id(order_id):
                raise BusinessError("Aucune commande trouvée avec cet ID")

            fields = {k: order[k] for k in ('supplier_id', 'order_number', 'status',
                                            'order_date', 'delivery_date')
                      if order.get(k) is not None}
            totals = None
            if order.get('items') is not None:
                totals = self._supplier_totals(order)
                fields.update(total_amount=totals['total_amount'], tax_amount=totals['tax_amount'])

            conn.execute("BEGIN TRANSACTION")
            self.db.update_record("supplier_orders", order_id, commit=False, **fields)
            if totals is not None:
                self.db.delete_items("supplier_orders", order_id, commit=False)
                self.db.insert_items("supplier_orders", order_id, totals['items'], commit=False)
            conn.commit()
            return True, "Commande fournisseur mise à jour", order_id
        except Exception as e:
            return self._fail(conn, e, "Erreur lors de la mise à jour de la commande fournisseur",
                              unique_message="Une commande avec ce numéro existe déjà")

    def update_supplier_order_status(self, order_id: int, status: str) -> Result:
        if not self.db.get_supplier_order_by_id(order_id):
            return False, "Aucune commande trouvée avec cet ID", None
        self.db.update_record("supplier_orders", order_id, status=status)
        return True, "Statut de la commande mis à jour", order_id

    def delete_supplier_order(self, order_id: int) -> Result:
        order = self.db.get_supplier_order_by_id(order_id)
        if not order:
            return False, "Aucune commande trouvée avec cet ID", None
        allowed, message = self.db.can_delete_supplier_order(order_id)
        if not allowed:
            return False, message, None
        if self.db.get_reception_note_by_order(order_id):
            return False, "Impossible de supprimer cette commande car elle a des bons de réception", None
        self.db.delete_supplier_order(order_id)
        self.db.log_action("Suppression commande fournisseur", order['order_number'])
        return True, "Commande fournisseur supprimée", order_id

    def get_supplier_orders(self) -> List[Dict[str, Any]]:
        return self.db.get_all_supplier_orders()

    # ==================== SUPPLIER INVOICES ====================

    def create_supplier_invoice(self, invoice: Dict[str, Any]) -> Result:
        conn = self.db._get_connection()
        try:
            if not (invoice.get('invoice_number') or '').strip():
                raise BusinessError("Le numéro de facture est requis")
            if not self.db.get_supplier_by_id(invoice.get('supplier_id')):
                raise BusinessError("Fournisseur non trouvé")
            if invoice.get('order_id') and not self.db.get_supplier_order_by_id(invoice['order_id']):
                raise BusinessError("Aucune commande trouvée avec cet ID")
            totals = self._supplier_totals(invoice)

            conn.execute("BEGIN TRANSACTION")
            invoice_id = self.db.insert_supplier_invoice(
                supplier_id=invoice['supplier_id'],
                invoice_number=invoice['invoice_number'].strip(),
                amount=totals['amount'],
                tax_amount=totals['tax_amount'],
                total_amount=totals['total_amount'],
                order_id=invoice.get('order_id'),
                status=invoice.get('status'),
                issue_date=invoice.get('issue_date'),
                due_date=invoice.get('due_date'),
                commit=False
            )
            self.db.insert_items("supplier_invoices", invoice_id, totals['items'], commit=False)
            conn.commit()
            return True, "Facture fournisseur créée avec succès", invoice_id
        except Exception as e:
            return self._fail(conn, e, "Erreur lors de la création de la facture fournisseur",
                              unique_message="Une facture fournisseur avec ce numéro existe déjà")

    def update_supplier_invoice(self, invoice_id: int, invoice: Dict[str, Any]) -> Result:
        conn = self.db._get_connection()
        try:
            if not self.db.get_supplier_invoice_by_id(invoice_id):
                raise BusinessError("Facture fournisseur non trouvée")

            fields = {k: invoice[k] for k in ('supplier_id', 'order_id', 'invoice_number', 'status',
                                              'issue_date', 'due_date', 'payment_date')
                      if invoice.get(k) is not None}
            totals = None
            if invoice.get('items') is not None:
                totals = self._supplier_totals(invoice)
                fields.update(amount=totals['amount'], tax_amount=totals['tax_amount'],
                              total_amount=totals['total_amount'])

            conn.execute("BEGIN TRANSACTION")
            self.db.update_record("supplier_invoices", invoice_id, commit=False, **fields)
            if totals is not None:
                self.db.delete_items("supplier_invoices", invoice_id, commit=False)
                self.db.insert_items("supplier_invoices", invoice_id, totals['items'], commit=False)
                if 'status' not in fields:
                    self._refresh_payment_status('supplier', invoice_id)
            conn.commit()
            return True, "Facture fournisseur mise à jour", invoice_id
        except Exception as e:
            return self._fail(conn, e, "Erreur lors de la mise à jour de la facture fournisseur",
                              unique_message="Une facture fournisseur avec ce numéro existe déjà")

    def update_supplier_invoice_status(self, invoice_id: int, status: str) -> Result:
        if not self.db.get_supplier_invoice_by_id(invoice_id):
            return False, "Facture fournisseur non trouvée", None
        fields = {'status': status}
        if status == 'Payée':
            fields['payment_date'] = now_str()
        self.db.update_record("supplier_invoices", invoice_id, **fields)
        return True, "Statut de la facture fournisseur mis à jour", invoice_id

    def delete_supplier_invoice(self, invoice_id: int) -> Result:
        if not self.db.get_supplier_invoice_by_id(invoice_id):
            return False, "Facture fournisseur non trouvée", None
        if self.db.get_all_payments('supplier', invoice_id):
            return False, "Impossible de supprimer cette facture car elle a des paiements associés", None
        self.db.delete_supplier_invoice(invoice_id)
        return True, "Facture fournisseur supprimée", invoice_id

    def get_supplier_invoices(self) -> List[Dict[str, Any]]:
        return self.db.get_all_supplier_invoices()

    # ==================== RECEPTION NOTES ====================

    def _reception_lines(self, items: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        lines = []
        for item in items:
            product = self.db.get_product_by_id(item['product_id'])
            if not product:
                raise BusinessError(f"Produit introuvable (id={item['product_id']})")
            received = float(item.get('received_quantity') or 0)
            if received < 0:
                raise BusinessError("La quantité reçue ne peut pas être négative")
            lines.append({
                'product_id': product['id'],
                'product_name': item.get('product_name') or product['name'],
                'ordered_quantity': float(item.get('ordered_quantity', received) or 0),
                'received_quantity': received,
                'unit_price': float(item.get('unit_price') or product.get('purchase_price_ht') or 0),
            })
        return lines

    def create_reception_note(self, note: Dict[str, Any]) -> Result:
        """Goods received from a supplier order enter stock here"""
        conn = self.db._get_connection()
        try:
            if not self.db.get_supplier_order_by_id(note.get('supplier_order_id')):
                raise BusinessError("Aucune commande trouvée avec cet ID")
            lines = self._reception_lines(note.get('items') or [])

            conn.execute("BEGIN TRANSACTION")
            number = note.get('reception_number') or self.db.generate_document_number('reception_note')
            note_id = self.db.insert_reception_note(
                supplier_order_id=note['supplier_order_id'],
                reception_number=number,
                driver_name=note.get('driver_name'),
                vehicle_registration=note.get('vehicle_registration'),
                reception_date=note.get('reception_date'),
                notes=note.get('notes'),
                commit=False
            )
            self.db.insert_reception_items(note_id, lines, commit=False)
            self._move_stock(lines, MOVEMENT_IN, 'reception_note', note_id, f"RN-{note_id}",
                             'Réception de marchandises', quantity_key='received_quantity')
            conn.commit()
            self.db.log_action("Création bon de réception", number)
            return True, "Bon de réception créé avec succès", note_id
        except Exception as e:
            return self._fail(conn, e, "Erreur lors de la création du bon de réception",
                              unique_message="Un bon de réception avec ce numéro existe déjà")

    def update_reception_note(self, note_id: int, note: Dict[str, Any]) -> Result:
        """Stock is corrected by the difference of received quantities per product"""
        conn = self.db._get_connection()
        try:
            if not self.db.get_reception_note_by_id(note_id):
                raise BusinessError("Bon de réception non trouvé")

            fields = {k: note[k] for k in ('reception_number', 'driver_name', 'vehicle_registration',
                                           'reception_date', 'notes')
                      if note.get(k) is not None}
            lines = None
            delta: Dict[int, float] = {}
            if note.get('items') is not None:
                lines = self._reception_lines(note['items'])
                for old in self.db.get_reception_items(note_id):
                    delta[old['product_id']] = delta.get(old['product_id'], 0.0) - old['received_quantity']
                for line in lines:
                    delta[line['product_id']] = delta.get(line['product_id'], 0.0) + line['received_quantity']
                # Lowered quantities leave the stock
                self._ensure_stock([{'product_id': product_id, 'quantity': -difference}
                                    for product_id, difference in delta.items() if difference < -1e-9])

            conn.execute("BEGIN TRANSACTION")
            self.db.update_record("reception_notes", note_id, commit=False, **fields)

            if lines is not None:
                for product_id, difference in delta.items():
                    if abs(difference) < 1e-9:
                        continue
                    self.db.log_stock_movement(
                        product_id=product_id,
                        movement_type=MOVEMENT_IN if difference > 0 else MOVEMENT_OUT,
                        quantity=abs(difference),
                        source_type='reception_note',
                        source_id=note_id,
                        reference=f"RN-{note_id}",
                        reason='Correction du bon de réception',
                        commit=False
                    )

                conn.execute("DELETE FROM reception_note_items WHERE reception_note_id = ?", (note_id,))
                self.db.insert_reception_items(note_id, lines, commit=False)

            conn.commit()
            return True, "Bon de réception mis à jour", note_id
        except Exception as e:
            return self._fail(conn, e, "Erreur lors de la mise à jour du bon de réception",
                              unique_message="Un bon de réception avec ce numéro existe déjà")

    def delete_reception_note(self, note_id: int) -> Result:
        conn = self.db._get_connection()
        try:
            note = self.db.get_reception_note_by_id(note_id)
            if not note:
                raise BusinessError("Bon de réception non trouvé")

            items = self.db.get_reception_items(note_id)
            self._ensure_stock([{'product_id': item['product_id'], 'quantity': item['received_quantity']}
                                for item in items])

            conn.execute("BEGIN TRANSACTION")
            self._move_stock(items, MOVEMENT_OUT,
                             'reception_note_cancellation', note_id, f"RN-{note_id}",
                             'Annulation du bon de réception', quantity_key='received_quantity')
            conn.execute("DELETE FROM reception_note_items WHERE reception_note_id = ?", (note_id,))
            conn.execute("DELETE FROM reception_notes WHERE id = ?", (note_id,))
            conn.commit()
            self.db.log_action("Suppression bon de réception", note['reception_number'])
            return True, "Bon de réception supprimé", note_id
        except Exception as e:
            return self._fail(conn, e, "Erreur lors de la suppression du bon de réception")

    def get_reception_notes(self) -> List[Dict[str, Any]]:
        return self.db.get_all_reception_notes()

    def get_reception_note(self, note_id: int) -> Optional[Dict[str, Any]]:
        note = self.db.get_reception_note_by_id(note_id)
        if note:
            note['items'] = self.db.get_reception_items(note_id)
        return note

    def get_reception_note_by_order(self, supplier_order_id: int) -> Optional[Dict[str, Any]]:
        return self.db.get_reception_note_by_order(supplier_order_id)

    # ==================== PAYMENTS ====================

    def _invoice_table(self, party: str) -> str:
        return "invoices" if party == 'client' else "supplier_invoices"

    def _refresh_payment_status(self, party: str, invoice_id: Optional[int]) -> Optional[str]:
        """
        Recompute the status of an invoice from its payments (inside the caller's transaction).
        Cancelled invoices keep their status.
        """
        if not invoice_id:
            return None
        table = self._invoice_table(party)
        invoice = self.db.get_record(table, invoice_id)
        if not invoice:
            return None
        if invoice['status'] == 'Annulée':
            return invoice['status']

        paid = self.db.get_total_paid(party, invoice_id)
        remaining = round((invoice['total_amount'] or 0) - paid, 3)
        today = datetime.now().strftime("%Y-%m-%d")

        if remaining <= 0:
            status = 'Payée'
        elif invoice['due_date'] and invoice['due_date'][:10] < today:
            status = 'En retard'
        else:
            status = 'En attente'

        fields = {'status': status}
        if party == 'supplier':
            fields['payment_date'] = now_str() if status == 'Payée' else None
        self.db.update_record(table, invoice_id, commit=False, **fields)
        return status

    def _payment_fields(self, party: str, payment: Dict[str, Any]) -> Dict[str, Any]:
        amount = float(payment.get('amount') or 0)
        if amount <= 0:
            raise BusinessError("Le montant du paiement doit être positif")

        party_column = 'client_id' if party == 'client' else 'supplier_id'
        party_id = payment.get(party_column)
        invoice_id = payment.get('invoice_id')
        if invoice_id:
            invoice = self.db.get_record(self._invoice_table(party), invoice_id)
            if not invoice:
                raise BusinessError("Facture non trouvée")
            party_id = party_id or invoice[party_column]

        exists = self.db.get_client_by_id(party_id) if party == 'client' else self.db.get_supplier_by_id(party_id)
        if not exists:
            raise BusinessError("Client non trouvé" if party == 'client' else "Fournisseur non trouvé")

        return {
            'party_id': party_id,
            'amount': amount,
            'invoice_id': invoice_id,
            'payment_date': payment.get('payment_date'),
            'payment_method': payment.get('payment_method'),
            'reference': payment.get('reference'),
            'notes': payment.get('notes'),
        }

    def create_payment(self, party: str, payment: Dict[str, Any]) -> Result:
        conn = self.db._get_connection()
        try:
            fields = self._payment_fields(party, payment)
            conn.execute("BEGIN TRANSACTION")
            payment_id = self.db.insert_payment(party, fields.pop('party_id'), commit=False, **fields)
            self._refresh_payment_status(party, fields['invoice_id'])
            conn.commit()
            return True, "Paiement enregistré avec succès", payment_id
        except Exception as e:
            return self._fail(conn, e, "Erreur lors de l'enregistrement du paiement")

    def update_payment(self, party: str, payment_id: int, payment: Dict[str, Any]) -> Result:
        """Old and new invoices both get their status recomputed"""
        conn = self.db._get_connection()
        try:
            existing = self.db.get_payment_by_id(party, payment_id)
            if not existing:
                raise BusinessError("Paiement non trouvé")
            merged = dict(existing)
            # An explicit None clears the optional columns (detaching the invoice included)
            merged.update({k: v for k, v in payment.items()
                           if v is not None or k in ('invoice_id', 'payment_method', 'reference', 'notes')})
            fields = self._payment_fields(party, merged)
            party_column = 'client_id' if party == 'client' else 'supplier_id'
            fields[party_column] = fields.pop('party_id')

            conn.execute("BEGIN TRANSACTION")
            self.db.update_payment(party, payment_id, commit=False, **fields)
            self._refresh_payment_status(party, existing['invoice_id'])
            if fields['invoice_id'] != existing['invoice_id']:
                self._refresh_payment_status(party, fields['invoice_id'])
            conn.commit()
            return True, "Paiement mis à jour", payment_id
        except Exception as e:
            return self._fail(conn, e, "Erreur lors de la mise à jour du paiement")

    def delete_payment(self, party: str, payment_id: int) -> Result:
        conn = self.db._get_connection()
        try:
            existing = self.db.get_payment_by_id(party, payment_id)
            if not existing:
                raise BusinessError("Paiement non trouvé")

            conn.execute("BEGIN TRANSACTION")
            self.db.delete_payment(party, payment_id, commit=False)
            self._refresh_payment_status(party, existing['invoice_id'])
            conn.commit()
            return True, "Paiement supprimé", payment_id
        except Exception as e:
            return self._fail(conn, e, "Erreur lors de la suppression du paiement")

    def create_client_payment(self, payment: Dict[str, Any]) -> Result:
        return self.create_payment('client', payment)

    def update_client_payment(self, payment_id: int, payment: Dict[str, Any]) -> Result:
        return self.update_payment('client', payment_id, payment)

    def delete_client_payment(self, payment_id: int) -> Result:
        return self.delete_payment('client', payment_id)

    def create_supplier_payment(self, payment: Dict[str, Any]) -> Result:
        return self.create_payment('supplier', payment)

    def update_supplier_payment(self, payment_id: int, payment: Dict[str, Any]) -> Result:
        return self.update_payment('supplier', payment_id, payment)

    def delete_supplier_payment(self, payment_id: int) -> Result:
        return self.delete_payment('supplier', payment_id)

    def get_client_payments(self) -> List[Dict[str, Any]]:
        return self.db.get_all_payments('client')

    def get_invoice_payments(self, invoice_id: int) -> List[Dict[str, Any]]:
        return self.db.get_all_payments('client', invoice_id)

    def get_supplier_payments(self, invoice_id: int = None) -> List[Dict[str, Any]]:
        return self.db.get_all_payments('supplier', invoice_id)

    # ==================== REFERENCE DATA ====================

    def _simple_create(self, create, data: Dict[str, Any], ok_message: str,
                       error_message: str, unique_message: str = None) -> Result:
        conn = self.db._get_connection()
        try:
            return True, ok_message, create(**data)
        except Exception as e:
            return self._fail(conn, e, error_message, unique_message=unique_message)

    def _simple_update(self, update, row_id: int, data: Dict[str, Any], ok_message: str,
                       error_message: str, unique_message: str = None) -> Result:
        conn = self.db._get_connection()
        try:
            if not update(row_id, **data):
                return False, "Élément non trouvé", None
            return True, ok_message, row_id
        except Exception as e:
            return self._fail(conn, e, error_message, unique_message=unique_message)

    def create_category(self, category: Dict[str, Any]) -> Result:
        if not (category.get('name') or '').strip():
            return False, "Le nom de la catégorie est requis", None
        return self._simple_create(self.db.create_category, category, "Catégorie créée avec succès",
                                   "Erreur lors de la création de la catégorie",
                                   "Une catégorie avec ce nom existe déjà")

    def update_category(self, category_id: int, category: Dict[str, Any]) -> Result:
        return self._simple_update(self.db.update_category, category_id, category,
                                   "Catégorie mise à jour", "Erreur lors de la mise à jour de la catégorie",
                                   "Une catégorie avec ce nom existe déjà")

    def delete_category(self, category_id: int) -> Result:
        allowed, message = self.db.can_delete_category(category_id)
        if not allowed:
            return False, message, None
        self.db.delete_category(category_id)
        return True, "Catégorie supprimée", category_id

    def get_categories(self) -> List[Dict[str, Any]]:
        return self.db.get_all_categories()

    def create_unit(self, unit: Dict[str, Any]) -> Result:
        if not (unit.get('name') or '').strip():
            return False, "Le nom de l'unité est requis", None
        return self._simple_create(self.db.create_unit, unit, "Unité créée avec succès",
                                   "Erreur lors de la création de l'unité",
                                   "Une unité avec ce nom existe déjà")

    def update_unit(self, unit_id: int, unit: Dict[str, Any]) -> Result:
        return self._simple_update(self.db.update_unit, unit_id, unit, "Unité mise à jour",
                                   "Erreur lors de la mise à jour de l'unité",
                                   "Une unité avec ce nom existe déjà")

    def delete_unit(self, unit_id: int) -> Result:
        allowed, message = self.db.can_delete_unit(unit_id)
        if not allowed:
            return False, message, None
        self.db.delete_unit(unit_id)
        return True, "Unité supprimée", unit_id

    def get_units(self) -> List[Dict[str, Any]]:
        return self.db.get_all_units()

    def create_tva_rate(self, tva: Dict[str, Any]) -> Result:
        rate = tva.get('rate')
        if rate is None or float(rate) < 0:
            return False, "Taux de TVA invalide", None
        return self._simple_create(self.db.create_tva_rate, tva, "Taux de TVA créé avec succès",
                                   "Erreur lors de la création du taux de TVA")

    def update_tva_rate(self, tva_id: int, tva: Dict[str, Any]) -> Result:
        return self._simple_update(self.db.update_tva_rate, tva_id, tva, "Taux de TVA mis à jour",
                                   "Erreur lors de la mise à jour du taux de TVA")

    def delete_tva_rate(self, tva_id: int) -> Result:
        allowed, message = self.db.can_delete_tva_rate(tva_id)
        if not allowed:
            return False, message, None
        self.db.delete_tva_rate(tva_id)
        return True, "Taux de TVA supprimé", tva_id

    def get_tva_rates(self) -> List[Dict[str, Any]]:
        return self.db.get_all_tva_rates()

    def create_product(self, product: Dict[str, Any]) -> Result:
        """A positive initial stock is recorded as an IN movement"""
        conn = self.db._get_connection()
        try:
            if not (product.get('name') or '').strip():
                raise BusinessError("Le nom du produit est requis")
            data = dict(product)
            initial_stock = float(data.pop('stock', 0) or 0)
            data.setdefault('category', 'Général')

            conn.execute("BEGIN TRANSACTION")
            product_id = self.db.create_product(commit=False, **data)
            if initial_stock > 0:
                self.db.log_stock_movement(
                    product_id=product_id,
                    movement_type=MOVEMENT_IN,
                    quantity=initial_stock,
                    source_type='adjustment',
                    reason='Stock initial',
                    commit=False
                )
            conn.commit()
            return True, "Produit créé avec succès", product_id
        except Exception as e:
            return self._fail(conn, e, "Erreur lors de la création du produit",
                              unique_message="Un produit avec ce nom existe déjà")

    def update_product(self, product_id: int, product: Dict[str, Any]) -> Result:
        data = dict(product)
        new_stock = data.pop('stock', None)
        ok, message, _ = self._simple_update(self.db.update_product, product_id, data,
                                             "Produit mis à jour",
                                             "Erreur lors de la mise à jour du produit",
                                             "Un produit avec ce nom existe déjà")
        if ok and new_stock is not None:
            product_row = self.db.get_product_by_id(product_id)
            if product_row['category'] != SERVICE_CATEGORY and float(new_stock) != (product_row['stock'] or 0):
                ok, message, _ = self.update_product_stock(product_id, new_stock)
        return ok, message, product_id if ok else None

    def delete_product(self, product_id: int) -> Result:
        allowed, message = self.db.can_delete_product(product_id)
        if not allowed:
            return False, message, None
        self.db.delete_product(product_id)
        return True, "Produit supprimé", product_id

    def get_products(self, active_only: bool = False) -> List[Dict[str, Any]]:
        return self.db.get_all_products(active_only)

    def get_product_by_id(self, product_id: int) -> Optional[Dict[str, Any]]:
        return self.db.get_product_by_id(product_id)

    def create_client(self, client: Dict[str, Any]) -> Result:
        if not (client.get('name') or '').strip():
            return False, "Le nom du client est requis", None
        return self._simple_create(self.db.create_client, client, "Client créé avec succès",
                                   "Erreur lors de la création du client")

    def update_client(self, client_id: int, client: Dict[str, Any]) -> Result:
        return self._simple_update(self.db.update_client, client_id, client, "Client mis à jour",
                                   "Erreur lors de la mise à jour du client")

    def can_delete_client(self, client_id: int) -> Tuple[bool, str]:
        return self.db.can_delete_client(client_id)

    def delete_client(self, client_id: int) -> Result:
        allowed, message = self.db.can_delete_client(client_id)
        if not allowed:
            return False, message, None
        self.db.delete_client(client_id)
        return True, "Client supprimé", client_id

    def get_clients(self) -> List[Dict[str, Any]]:
        return self.db.get_all_clients()

    # ==================== ENTERPRISE SETTINGS ====================

    def get_enterprise_settings(self) -> Dict[str, Any]:
        """First filled company, else first company, else a fresh empty one"""
        company = self.db.get_company_settings()
        if company:
            return company
        company_id = self.db.create_company(fodec_rate=get_invoicing_settings()['taux_fodec'])
        logger.info("Paramètres entreprise initialisés (id=%s)", company_id)
        return self.db.get_company_by_id(company_id)

    def create_enterprise_settings(self, settings: Dict[str, Any]) -> Result:
        return self._simple_create(self.db.create_company, settings,
                                   "Paramètres de l'entreprise enregistrés",
                                   "Erreur lors de l'enregistrement des paramètres de l'entreprise")

    def update_enterprise_settings(self, company_id: int, settings: Dict[str, Any]) -> Result:
        return self._simple_update(self.db.update_company, company_id, settings,
                                   "Paramètres de l'entreprise mis à jour",
                                   "Erreur lors de la mise à jour des paramètres de l'entreprise")


# Global business logic instance
_logic_instance: Optional[BusinessLogic] = None


def get_logic() -> BusinessLogic:
    """Get global business logic instance"""
    global _logic_instance
    if _logic_instance is None:
        _logic_instance = BusinessLogic()
    return _logic_instance
