"""
Reports Module - Finoria Gestion
Dashboard statistics and the stock movement report (pandas -> Excel)
"""

from datetime import datetime, timedelta
from typing import Dict, Any

import pandas as pd
from openpyxl.styles import Font, PatternFill, Alignment
from openpyxl.utils import get_column_letter

from config import get_invoicing_settings
from database import get_db, SERVICE_CATEGORY
from logger import get_logger

logger = get_logger(__name__)

VALID_RANGES = ("7", "30", "90", "365")
CLIENT_TYPES = ("Entreprises", "Particuliers", "Associations")


def _empty_stats() -> Dict[str, Any]:
    return {
        'today_revenue': 0.0,
        'monthly_revenue': 0.0,
        'total_clients': 0,
        'total_products': 0,
        'low_stock_products': 0,
        'total_sales': 0,
        'pending_invoices': 0,
        'overdue_invoices': 0,
        'recent_sales': [],
        'sales_by_month': [],
        'top_products': [],
        'client_distribution': [{'type': t, 'count': 0} for t in CLIENT_TYPES],
    }


def _range_start(date_range: str, now: datetime) -> datetime:
    """"365" is one calendar year back, the others are day counts"""
    if date_range == "365":
        try:
            return now.replace(year=now.year - 1)
        except ValueError:
            # 29 February
            return now.replace(year=now.year - 1, day=28)
    if date_range == "7":
        # Today and the 6 previous days
        return (now - timedelta(days=6)).replace(hour=0, minute=0, second=0, microsecond=0)
    return now - timedelta(days=int(date_range))


def get_dashboard_stats(date_range: str = "30") -> Dict[str, Any]:
    """
    Dashboard figures for the last 7/30/90/365 days (anything else means 30).
    Revenue is the TTC total of sales. Cancelled sales are left out of every sales figure.
    """
    date_range = str(date_range)
    if date_range not in VALID_RANGES:
        date_range = "30"

    try:
        conn = get_db()._get_connection()
        cursor = conn.cursor()

        now = datetime.now()
        today = now.strftime("%Y-%m-%d")
        month = now.strftime("%Y-%m")
        start = _range_start(date_range, now).strftime("%Y-%m-%d %H:%M:%S")
        threshold = get_invoicing_settings()['seuil_stock_bas']

        stats = _empty_stats()

        # --- Revenue ---
        cursor.execute("""
            SELECT COALESCE(SUM(total_amount), 0) FROM sales
            WHERE substr(sale_date, 1, 10) = ? AND status != 'Annulée'
        """, (today,))
        stats['today_revenue'] = round(cursor.fetchone()[0], 3)

        cursor.execute("""
            SELECT COALESCE(SUM(total_amount), 0) FROM sales
            WHERE substr(sale_date, 1, 7) = ? AND status != 'Annulée'
        """, (month,))
        stats['monthly_revenue'] = round(cursor.fetchone()[0], 3)

        # --- Counts ---
        stats['total_clients'] = cursor.execute("SELECT COUNT(*) FROM clients").fetchone()[0]
        stats['total_products'] = cursor.execute(
            "SELECT COUNT(*) FROM products WHERE is_active = 1").fetchone()[0]
        stats['low_stock_products'] = cursor.execute("""
            SELECT COUNT(*) FROM products
            WHERE is_active = 1 AND category != ? AND stock <= ?
        """, (SERVICE_CATEGORY, threshold)).fetchone()[0]
        stats['total_sales'] = cursor.execute("""
            SELECT COUNT(*) FROM sales WHERE sale_date >= ? AND status != 'Annulée'
        """, (start,)).fetchone()[0]
        stats['pending_invoices'] = cursor.execute(
            "SELECT COUNT(*) FROM invoices WHERE status = 'En attente'").fetchone()[0]
        stats['overdue_invoices'] = cursor.execute("""
            SELECT COUNT(*) FROM invoices
            WHERE status IN ('En attente', 'En retard')
            AND due_date IS NOT NULL AND substr(due_date, 1, 10) < ?
        """, (today,)).fetchone()[0]

        # --- Recent sales ---
        cursor.execute("""
            SELECT s.id, s.total_amount, s.tax_amount, s.status, s.sale_date,
                   c.name as client_name
            FROM sales s
            JOIN clients c ON s.client_id = c.id
            WHERE s.sale_date >= ? AND s.status != 'Annulée'
            ORDER BY s.sale_date DESC, s.id DESC
            LIMIT 10
        """, (start,))
        stats['recent_sales'] = [dict(row) for row in cursor.fetchall()]

        # --- Sales series ---
        df = pd.read_sql_query("""
            SELECT sale_date, total_amount FROM sales
            WHERE sale_date >= ? AND status != 'Annulée'
        """, conn, params=(start,))
        df['sale_date'] = pd.to_datetime(df['sale_date'], format='mixed')

        if date_range == "7":
            days = pd.date_range(end=pd.Timestamp(today), periods=7, freq='D')
            grouped = df.groupby(df['sale_date'].dt.normalize())['total_amount'].agg(['sum', 'count'])
            grouped = grouped.reindex(days, fill_value=0)
            stats['sales_by_month'] = [
                {'period': day.strftime("%Y-%m-%d"), 'total': round(float(row['sum']), 3),
                 'count': int(row['count'])}
                for day, row in grouped.iterrows()
            ]
        else:
            grouped = df.groupby(df['sale_date'].dt.strftime("%Y-%m"))['total_amount'].agg(['sum', 'count'])
            stats['sales_by_month'] = [
                {'period': period, 'total': round(float(row['sum']), 3), 'count': int(row['count'])}
                for period, row in grouped.sort_index().iterrows()
            ]

        # --- Top products ---
        cursor.execute("""
            SELECT si.product_id, si.product_name,
                   SUM(si.quantity) as quantity,
                   SUM(si.total_price) as revenue
            FROM sale_items si
            JOIN sales s ON si.sale_id = s.id
            WHERE s.sale_date >= ? AND s.status != 'Annulée'
            GROUP BY si.product_id, si.product_name
            ORDER BY revenue DESC
            LIMIT 5
        """, (start,))
        stats['top_products'] = [dict(row) for row in cursor.fetchall()]

        # --- Client distribution ---
        cursor.execute("""
            SELECT
                SUM(CASE WHEN client_type = 'Association' THEN 1 ELSE 0 END),
                SUM(CASE WHEN COALESCE(client_type, '') != 'Association'
                          AND TRIM(COALESCE(company, '')) != '' THEN 1 ELSE 0 END),
                SUM(CASE WHEN COALESCE(client_type, '') != 'Association'
                          AND TRIM(COALESCE(company, '')) = '' THEN 1 ELSE 0 END)
            FROM clients
        """)
        associations, companies, individuals = [v or 0 for v in cursor.fetchone()]
        stats['client_distribution'] = [
            {'type': 'Entreprises', 'count': companies},
            {'type': 'Particuliers', 'count': individuals},
            {'type': 'Associations', 'count': associations},
        ]

        return stats

    except Exception:
        logger.exception("Erreur lors du calcul des statistiques du tableau de bord")
        return _empty_stats()


# ==================== STOCK MOVEMENT REPORT ====================

def generate_stock_movements_excel(start_date: str, end_date: str, output_path: str) -> str:
    """
    Stock movements between two dates (YYYY-MM-DD, inclusive) written to Excel:
    a detail sheet and a per-product IN/OUT summary.
    """
    datetime.strptime(start_date, "%Y-%m-%d")
    datetime.strptime(end_date, "%Y-%m-%d")

    conn = get_db()._get_connection()
    query = """
        SELECT
            m.created_at as "Date",
            m.movement_type as "Type",
            m.source_type as "Origine",
            m.reference as "Référence",
            m.product_name as "Produit",
            m.stock_before as "Stock avant",
            m.quantity as "Quantité",
            m.stock_after as "Stock après",
            m.reason as "Motif"
        FROM stock_movements m
        WHERE substr(m.created_at, 1, 10) BETWEEN ? AND ?
        ORDER BY m.created_at ASC, m.id ASC
    """
    df = pd.read_sql_query(query, conn, params=(start_date, end_date))

    if df.empty:
        summary = pd.DataFrame(columns=["Produit", "Entrées", "Sorties", "Solde"])
    else:
        summary = df.pivot_table(index="Produit", columns="Type", values="Quantité",
                                 aggfunc="sum", fill_value=0)
        summary = summary.reindex(columns=["IN", "OUT"], fill_value=0)
        summary = summary.rename(columns={"IN": "Entrées", "OUT": "Sorties"}).reset_index()
        summary.columns.name = None
        summary["Solde"] = summary["Entrées"] - summary["Sorties"]

    header_font = Font(bold=True, color="FFFFFF")
    header_fill = PatternFill(start_color="1a237e", end_color="1a237e", fill_type="solid")

    with pd.ExcelWriter(output_path, engine='openpyxl') as writer:
        for sheet_name, frame in (("Mouvements", df), ("Synthèse", summary)):
            frame.to_excel(writer, index=False, sheet_name=sheet_name)
            worksheet = writer.sheets[sheet_name]
            for cell in worksheet[1]:
                cell.font = header_font
                cell.fill = header_fill
                cell.alignment = Alignment(horizontal='center')
            # Adjust column widths
            for idx, col in enumerate(frame.columns, start=1):
                values = frame[col].map(lambda v: len(str(v)) if pd.notna(v) else 0)
                max_len = max(values.max() if len(values) else 0, len(str(col))) + 2
                worksheet.column_dimensions[get_column_letter(idx)].width = min(max_len, 50)

    logger.info("Rapport des mouvements de stock généré: %s (%d lignes)", output_path, len(df))
    return output_path
