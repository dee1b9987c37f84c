"""
Utilities Module - Finoria Gestion
Handles PDF generation, Excel exports, amounts in words, and database backups
"""

import os
import sqlite3
from datetime import datetime
from typing import List, Dict, Any, Optional
from xml.sax.saxutils import escape

from reportlab.lib import colors
from reportlab.lib.pagesizes import A4
from reportlab.lib.styles import getSampleStyleSheet, ParagraphStyle
from reportlab.lib.units import cm
from reportlab.platypus import SimpleDocTemplate, Table, TableStyle, Paragraph, Spacer
from reportlab.lib.enums import TA_CENTER
from openpyxl import Workbook
from openpyxl.styles import Font, Alignment, PatternFill

from config import get_backup_folder
from database import get_db
from logger import get_logger

logger = get_logger(__name__)

HEADER_COLOR = "1a237e"


# ==================== AMOUNT IN WORDS ====================

def nombre_en_lettres(nombre: float) -> str:
    "Convert number to French words for Tunisian Dinars and Millimes."

    unites = ["", "Un", "Deux", "Trois", "Quatre", "Cinq", "Six", "Sept", "Huit", "Neuf"]
    dizaines = ["", "Dix", "Vingt", "Trente", "Quarante", "Cinquante",
                "Soixante", "Soixante", "Quatre-Vingt", "Quatre-Vingt"]
    speciales = ["Dix", "Onze", "Douze", "Treize", "Quatorze", "Quinze",
                 "Seize", "Dix-Sept", "Dix-Huit", "Dix-Neuf"]

    def convert_centaines(n: int) -> str:
        """Convert number 0-999 to words"""
        if n == 0:
            return ""
        elif n < 10:
            return unites[n]
        elif n < 20:
            return speciales[n - 10]
        elif n < 100:
            d, u = divmod(n, 10)
            if d == 7 or d == 9:
                # 70-79 and 90-99 are built on 10-19
                liaison = "-et-" if (d == 7 and u == 1) else "-"
                return dizaines[d] + liaison + speciales[u]
            elif d == 8:
                return dizaines[d] + ("s" if u == 0 else "-" + unites[u])
            elif u == 1:
                return dizaines[d] + "-et-Un"
            else:
                return dizaines[d] + ("-" + unites[u] if u > 0 else "")
        else:
            c, reste = divmod(n, 100)
            centaine = "Cent" if c == 1 else unites[c] + " Cent"
            if reste == 0 and c > 1:
                centaine += "s"
            return centaine + (" " + convert_centaines(reste) if reste > 0 else "")

    def convert_milliers(n: int) -> str:
        if n < 1000:
            return convert_centaines(n)
        milliers, reste = divmod(n, 1000)
        mil = "Mille" if milliers == 1 else convert_centaines(milliers) + " Mille"
        return mil + (" " + convert_centaines(reste) if reste > 0 else "")

    def convert_millions(n: int) -> str:
        if n < 1000000:
            return convert_milliers(n)
        millions, reste = divmod(n, 1000000)
        if millions == 1:
            mil = "Un Million"
        else:
            mil = convert_milliers(millions) + " Millions"
        return mil + (" " + convert_milliers(reste) if reste > 0 else "")

    prefix = ""
    if nombre < 0:
        nombre = abs(nombre)
        prefix = "Moins "

    # 1 dinar = 1000 millimes
    total_millimes = int(round(nombre * 1000))
    dinars, millimes = divmod(total_millimes, 1000)

    if dinars == 0:
        result_dinars = "Zéro Dinar Tunisien"
    else:
        result_dinars = convert_millions(dinars) + (" Dinars Tunisiens" if dinars > 1 else " Dinar Tunisien")

    if millimes > 0:
        result_millimes = convert_centaines(millimes) + (" Millimes" if millimes > 1 else " Millime")
        return prefix + result_dinars + " et " + result_millimes
    return prefix + result_dinars


# ==================== FORMATTING ====================

def format_number(value: float, decimals: int = 3) -> str:
    """Format a number with thousand separators (space) and fixed decimals."""
    try:
        if value is None:
            value = 0.0
        s = f"{float(value):,.{decimals}f}"
        return s.replace(",", " ")
    except (TypeError, ValueError):
        return f"{0:.{decimals}f}"


def format_currency(value: float) -> str:
    """Dinar amount: 3 decimals (millimes), space separator"""
    return format_number(value, 3) + " DT"


def parse_currency(value_str: Any) -> float:
    """Parse string with spaces to float. Handles '1 234,500' -> 1234.5"""
    if not value_str:
        return 0.0
    if isinstance(value_str, (int, float)):
        return float(value_str)
    clean = str(value_str).replace("DT", "").replace(" ", "").replace(",", ".")
    try:
        return float(clean)
    except ValueError:
        return 0.0


def format_quantity(value: float) -> str:
    """Whole quantities without decimals, others with 3"""
    value = float(value or 0)
    if value.is_integer():
        return format_number(value, 0)
    return format_number(value, 3)


def format_date(value: Optional[str]) -> str:
    """'2026-03-05 10:00:00' -> '05/03/2026'"""
    if not value:
        return ""
    try:
        return datetime.strptime(str(value)[:10], "%Y-%m-%d").strftime("%d/%m/%Y")
    except ValueError:
        return str(value)


# ==================== PDF GENERATION ====================

# kind -> title, number column, date column, second date label, second date column, party, words label
DOCUMENT_KINDS = {
    "facture": ("FACTURE", "number", "issue_date", "Échéance", "due_date", "client",
                "Arrêtée la présente facture à la somme de"),
    "devis": ("DEVIS", "number", "issue_date", "Valable jusqu'au", "due_date", "client",
              "Arrêté le présent devis à la somme de"),
    "avoir": ("FACTURE D'AVOIR", "number", "issue_date", None, None, "client",
              "Arrêtée la présente facture d'avoir à la somme de"),
    "bon_commande": ("BON DE COMMANDE", "number", "order_date", "Livraison prévue", "delivery_date",
                     "client", "Arrêté le présent bon de commande à la somme de"),
    "bon_livraison": ("BON DE LIVRAISON", "delivery_number", "delivery_date", None, None, "client", None),
    "bon_reception": ("BON DE RÉCEPTION", "reception_number", "reception_date", None, None, "supplier", None),
}


def load_document(kind: str, document_id: int) -> Optional[Dict[str, Any]]:
    """Fetch a document with its items, in the shape generate_document_pdf expects"""
    db = get_db()
    if kind == "facture":
        document = db.get_invoice_by_id(document_id)
        table = "invoices"
    elif kind == "devis":
        document = db.get_quote_by_id(document_id)
        table = "quotes"
    elif kind == "avoir":
        document = db.get_credit_note_by_id(document_id)
        table = "credit_notes"
    elif kind == "bon_commande":
        document = db.get_purchase_order_by_id(document_id)
        table = "purchase_orders"
    elif kind == "bon_livraison":
        return db.get_delivery_receipt_by_id(document_id)
    elif kind == "bon_reception":
        document = db.get_reception_note_by_id(document_id)
        if document:
            document['items'] = db.get_reception_items(document_id)
        return document
    else:
        raise ValueError(f"Type de document inconnu: {kind}")

    if document:
        document['items'] = db.get_items(table, document_id)
    return document


def _company_block(company: Optional[Dict[str, Any]]) -> str:
    if not company:
        return ""
    lines = [f"<b>{escape(company.get('name') or '')}</b>"]
    if company.get('address'):
        lines.append(escape(company['address']))
    city = " ".join(filter(None, [company.get('city'), company.get('country')]))
    if city:
        lines.append(escape(city))
    contact = " | ".join(filter(None, [company.get('phone'), company.get('email')]))
    if contact:
        lines.append(escape(contact))
    if company.get('tax_id'):
        lines.append(f"MF: {escape(company['tax_id'])}")
    if company.get('tva_number'):
        lines.append(f"N° TVA: {escape(company['tva_number'])}")
    return "<br/>".join(lines)


def _party_block(document: Dict[str, Any], party: str) -> str:
    label = "Client" if party == "client" else "Fournisseur"
    name = document.get(f"{party}_name") or ""
    lines = [f"<b>{label}:</b> {escape(name)}"]
    if document.get(f"{party}_company"):
        lines.append(escape(document[f"{party}_company"]))
    if document.get(f"{party}_address"):
        lines.append(f"<b>Adresse:</b> {escape(document[f'{party}_address'])}")
    if document.get(f"{party}_tax_id"):
        lines.append(f"<b>MF:</b> {escape(document[f'{party}_tax_id'])}")
    return "<br/>".join(lines)


def generate_document_pdf(document: Dict[str, Any], kind: str, filename: str,
                          company: Dict[str, Any] = None) -> str:
    """
    Render any commercial document (facture, devis, avoir, bon_commande,
    bon_livraison, bon_reception) with one plain A4 layout.
    """
    if kind not in DOCUMENT_KINDS:
        raise ValueError(f"Type de document inconnu: {kind}")
    title, number_col, date_col, second_label, second_col, party, words_label = DOCUMENT_KINDS[kind]

    doc = SimpleDocTemplate(filename, pagesize=A4, leftMargin=1.5*cm, rightMargin=1.5*cm,
                            topMargin=1.5*cm, bottomMargin=1.5*cm)
    story = []
    styles = getSampleStyleSheet()

    title_style = ParagraphStyle(
        'DocumentTitle',
        parent=styles['Heading1'],
        fontSize=18,
        textColor=colors.HexColor('#' + HEADER_COLOR),
        spaceAfter=20,
        alignment=TA_CENTER
    )

    # Company (left) / party (right)
    header_table = Table(
        [[Paragraph(_company_block(company), styles['Normal']),
          Paragraph(_party_block(document, party), styles['Normal'])]],
        colWidths=[9*cm, 9*cm]
    )
    header_table.setStyle(TableStyle([
        ('VALIGN', (0, 0), (-1, -1), 'TOP'),
        ('BOX', (1, 0), (1, 0), 0.5, colors.grey),
        ('LEFTPADDING', (1, 0), (1, 0), 8),
    ]))
    story.append(header_table)
    story.append(Spacer(1, 0.8*cm))
    story.append(Paragraph(title, title_style))

    # Number and dates
    info = [f"N° {document.get(number_col) or ''}", f"Date: {format_date(document.get(date_col))}"]
    if second_label and document.get(second_col):
        info.append(f"{second_label}: {format_date(document.get(second_col))}")
    info_table = Table([info], colWidths=[18*cm / len(info)] * len(info))
    info_table.setStyle(TableStyle([
        ('FONT', (0, 0), (-1, -1), 'Helvetica-Bold', 10),
        ('ALIGN', (0, 0), (0, 0), 'LEFT'),
        ('ALIGN', (-1, 0), (-1, 0), 'RIGHT'),
    ]))
    story.append(info_table)

    extra = []
    if kind == "avoir":
        if document.get('original_invoice_number'):
            extra.append(f"<b>Facture d'origine:</b> {escape(document['original_invoice_number'])}")
        if document.get('reason'):
            extra.append(f"<b>Motif:</b> {escape(document['reason'])}")
    if kind in ("bon_livraison", "bon_reception"):
        if document.get('driver_name'):
            extra.append(f"<b>Chauffeur:</b> {escape(document['driver_name'])}")
        if document.get('vehicle_registration'):
            extra.append(f"<b>Véhicule:</b> {escape(document['vehicle_registration'])}")
    if kind == "bon_reception" and document.get('supplier_order_number'):
        extra.append(f"<b>Commande:</b> {escape(document['supplier_order_number'])}")
    if extra:
        story.append(Spacer(1, 0.3*cm))
        story.append(Paragraph(" | ".join(extra), styles['Normal']))
    story.append(Spacer(1, 0.6*cm))

    # Items
    items = document.get('items') or []
    if kind == "bon_reception":
        table_data = [['Désignation', 'Qté commandée', 'Qté reçue', 'P.U. HT']]
        for item in items:
            table_data.append([
                Paragraph(escape(item['product_name']), styles['Normal']),
                format_quantity(item['ordered_quantity']),
                format_quantity(item['received_quantity']),
                format_number(item['unit_price']),
            ])
        col_widths = [8*cm, 3.5*cm, 3*cm, 3.5*cm]
    elif kind == "bon_livraison":
        table_data = [['Désignation', 'Quantité', 'P.U. HT', 'Total HT']]
        for item in items:
            table_data.append([
                Paragraph(escape(item['product_name']), styles['Normal']),
                format_quantity(item['quantity']),
                format_number(item['unit_price']),
                format_number(item['quantity'] * item['unit_price']),
            ])
        col_widths = [8*cm, 3*cm, 3.5*cm, 3.5*cm]
    else:
        table_data = [['Désignation', 'Quantité', 'P.U. HT', 'Remise', 'Total HT']]
        for item in items:
            table_data.append([
                Paragraph(escape(item['product_name']), styles['Normal']),
                format_quantity(item['quantity']),
                format_number(item['unit_price']),
                f"{item.get('discount') or 0:g}%",
                format_number(item['total_price']),
            ])
        col_widths = [7*cm, 2.5*cm, 3*cm, 2*cm, 3.5*cm]

    items_table = Table(table_data, colWidths=col_widths, repeatRows=1)
    items_table.setStyle(TableStyle([
        ('BACKGROUND', (0, 0), (-1, 0), colors.HexColor('#' + HEADER_COLOR)),
        ('TEXTCOLOR', (0, 0), (-1, 0), colors.whitesmoke),
        ('FONTNAME', (0, 0), (-1, 0), 'Helvetica-Bold'),
        ('ALIGN', (1, 0), (-1, -1), 'RIGHT'),
        ('VALIGN', (0, 0), (-1, -1), 'MIDDLE'),
        ('GRID', (0, 0), (-1, -1), 0.5, colors.black),
        ('BOTTOMPADDING', (0, 0), (-1, 0), 8),
    ]))
    story.append(items_table)
    story.append(Spacer(1, 0.6*cm))

    # Totals
    if words_label:
        discount = sum(
            item['unit_price'] * item['quantity'] * (item.get('discount') or 0) / 100 for item in items)
        totals = [['Total HT', format_number(document.get('amount'))]]
        if discount:
            totals.append(['Remise', format_number(discount)])
        if document.get('fodec_amount'):
            totals.append(['FODEC', format_number(document['fodec_amount'])])
        totals.append(['TVA', format_number(document.get('tax_amount'))])
        totals.append(['Total TTC', format_currency(document.get('total_amount'))])

        totals_table = Table(totals, colWidths=[4*cm, 4*cm], hAlign='RIGHT')
        totals_table.setStyle(TableStyle([
            ('GRID', (0, 0), (-1, -1), 0.5, colors.black),
            ('ALIGN', (1, 0), (1, -1), 'RIGHT'),
            ('FONTNAME', (0, -1), (-1, -1), 'Helvetica-Bold'),
            ('BACKGROUND', (0, -1), (-1, -1), colors.HexColor('#e8eaf6')),
        ]))
        story.append(totals_table)
        story.append(Spacer(1, 0.8*cm))

        montant_lettres = nombre_en_lettres(document.get('total_amount') or 0)
        story.append(Paragraph(f"<b>{words_label} :</b> {montant_lettres}", styles['Normal']))
    elif kind == "bon_livraison":
        total = sum(item['quantity'] * item['unit_price'] for item in items)
        story.append(Paragraph(f"<b>Total HT:</b> {format_currency(total)}", styles['Normal']))

    doc.build(story)
    logger.info("PDF généré: %s (%s)", filename, kind)
    return filename


# ==================== EXCEL EXPORTS ====================

def _write_sheet(title: str, headers: List[str], rows: List[List[Any]], filename: str,
                 max_width: int = 40) -> str:
    wb = Workbook()
    ws = wb.active
    ws.title = title

    # Header style
    header_fill = PatternFill(start_color=HEADER_COLOR, end_color=HEADER_COLOR, fill_type="solid")
    header_font = Font(bold=True, color="FFFFFF", size=12)
    center_align = Alignment(horizontal="center", vertical="center")

    ws.append(headers)
    for cell in ws[1]:
        cell.fill = header_fill
        cell.font = header_font
        cell.alignment = center_align

    for row in rows:
        ws.append(row)

    # Auto-adjust column widths
    for column in ws.columns:
        column_letter = column[0].column_letter
        max_length = max(len(str(cell.value)) if cell.value is not None else 0 for cell in column)
        ws.column_dimensions[column_letter].width = min(max_length + 2, max_width)

    wb.save(filename)
    return filename


def export_clients_to_excel(clients: List[Dict[str, Any]], filename: str) -> str:
    "Export clients list to Excel"
    headers = ['Nom', 'Société', 'Type', 'Email', 'Téléphone', 'Adresse', 'Matricule fiscal']
    rows = [[
        client['name'],
        client.get('company') or '',
        client.get('client_type') or '',
        client.get('email') or '',
        client.get('phone') or '',
        client.get('address') or '',
        client.get('tax_id') or '',
    ] for client in clients]
    return _write_sheet("Clients", headers, rows, filename, max_width=50)


def export_invoices_to_excel(invoices: List[Dict[str, Any]], filename: str) -> str:
    "Export invoices to Excel"
    headers = ['Numéro', 'Date', 'Échéance', 'Client', 'Montant HT', 'FODEC',
               'TVA', 'Montant TTC', 'Payé', 'Reste', 'Statut']
    rows = []
    for invoice in invoices:
        paid = invoice.get('paid_amount') or 0.0
        rows.append([
            invoice['number'],
            format_date(invoice.get('issue_date')),
            format_date(invoice.get('due_date')),
            invoice.get('client_name', ''),
            invoice['amount'],
            invoice.get('fodec_amount') or 0.0,
            invoice['tax_amount'],
            invoice['total_amount'],
            paid,
            round(invoice['total_amount'] - paid, 3),
            invoice['status'],
        ])
    return _write_sheet("Factures", headers, rows, filename)


def export_stock_to_excel(products: List[Dict[str, Any]], filename: str) -> str:
    "Export stock status to Excel"
    headers = ['Produit', 'Référence', 'Catégorie', 'Unité', 'Stock actuel',
               'Prix de vente HT', 'Prix d\'achat HT', 'Valeur du stock (achat)']
    rows = [[
        product['name'],
        product.get('reference') or '',
        product['category'],
        product.get('unit_symbol') or '',
        product['stock'],
        product.get('selling_price_ht') or 0.0,
        product.get('purchase_price_ht') or 0.0,
        round((product['stock'] or 0) * (product.get('purchase_price_ht') or 0), 3),
    ] for product in products]
    return _write_sheet("État des Stocks", headers, rows, filename, max_width=30)


# ==================== BACKUP / EXPORT / IMPORT ====================

REQUIRED_TABLES = {"clients", "products", "sales", "invoices", "quotes"}


def create_backup(prefix: str = "finoria", backup_dir: str = None) -> str:
    "Create timestamped backup of the live database"
    backup_dir = backup_dir or get_backup_folder()
    os.makedirs(backup_dir, exist_ok=True)

    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S_%f")
    backup_path = os.path.join(backup_dir, f"{prefix}_{timestamp}.db")
    get_db().backup_to(backup_path)
    logger.info("Sauvegarde créée: %s", backup_path)
    return backup_path


def export_database(backup_dir: str = None) -> Dict[str, Any]:
    """Copy the live database to <backup folder>/database-export-<timestamp>.db"""
    try:
        backup_dir = backup_dir or get_backup_folder()
        os.makedirs(backup_dir, exist_ok=True)
        timestamp = datetime.now().strftime("%Y-%m-%dT%H-%M-%S-%f")
        filename = f"database-export-{timestamp}.db"
        path = os.path.join(backup_dir, filename)
        get_db().backup_to(path)
        get_db().log_action("Export base de données", filename)
        logger.info("Base de données exportée: %s", path)
        return {'success': True, 'path': path, 'filename': filename}
    except Exception as e:
        logger.exception("Erreur lors de l'export de la base de données")
        return {'success': False, 'error': f"Erreur lors de l'export de la base de données: {e}"}


def validate_database_file(source_path: str) -> Optional[str]:
    """None if source_path is an SQLite file with the core tables, else the error message"""
    if not source_path or not os.path.isfile(source_path):
        return "Fichier de base de données introuvable"
    conn = sqlite3.connect(source_path)
    try:
        tables = {row[0] for row in conn.execute("SELECT name FROM sqlite_master WHERE type='table'")}
    except sqlite3.DatabaseError:
        return "Le fichier sélectionné n'est pas une base de données valide"
    finally:
        conn.close()
    missing = REQUIRED_TABLES - tables
    if missing:
        return f"Base de données incompatible (tables manquantes: {', '.join(sorted(missing))})"
    return None


def import_database(source_path: str, backup_dir: str = None) -> Dict[str, Any]:
    """
    Replace the live database with source_path.
    A safety copy is taken first and restored if the import fails.
    """
    error = validate_database_file(source_path)
    if error:
        return {'success': False, 'message': error, 'restart_required': False}

    db = get_db()
    try:
        safety_copy = create_backup(prefix="pre-import", backup_dir=backup_dir)
    except Exception as e:
        logger.exception("Impossible de créer la copie de sécurité avant import")
        return {'success': False, 'message': f"Impossible de créer la copie de sécurité: {e}",
                'restart_required': False}

    try:
        db.restore_from(source_path)
    except Exception as e:
        logger.exception("Échec de l'import, restauration de la copie de sécurité %s", safety_copy)
        try:
            db.restore_from(safety_copy)
        except Exception:
            logger.exception("Restauration de la copie de sécurité impossible: %s", safety_copy)
            return {'success': False,
                    'message': f"Import échoué et copie de sécurité non restaurée: {safety_copy}",
                    'restart_required': True}
        return {'success': False, 'message': f"Erreur lors de l'import de la base de données: {e}",
                'restart_required': False}

    db.log_action("Import base de données", os.path.basename(source_path))
    logger.info("Base de données importée depuis %s", source_path)
    return {'success': True, 'message': "Base de données importée avec succès", 'restart_required': True}
