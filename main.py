"""
Main Entry Point - Finoria Gestion
Command line access to the database, conversions, documents and exports
"""

import os
import sys
import json
import argparse

from logger import setup_logging, get_logger
from database import get_db
from handlers import invoke
from reports import get_dashboard_stats, generate_stock_movements_excel
from utils import (export_clients_to_excel, export_invoices_to_excel, export_stock_to_excel,
                   format_currency, DOCUMENT_KINDS)

logger = get_logger(__name__)


def _report(response: dict, success_text: str = None) -> int:
    """Print a handler response, return the process exit code"""
    if response.get("success"):
        print(success_text or response.get("message") or "OK")
        return 0
    print(f"Erreur: {response.get('error')}", file=sys.stderr)
    return 1


def cmd_init(args) -> int:
    db = get_db()
    print(f"Base de données prête: {db.db_path}")
    return 0


def cmd_dashboard(args) -> int:
    stats = get_dashboard_stats(args.range)
    if args.json:
        print(json.dumps(stats, ensure_ascii=False, indent=2, default=str))
        return 0

    print(f"Chiffre d'affaires du jour   : {format_currency(stats['today_revenue'])}")
    print(f"Chiffre d'affaires du mois   : {format_currency(stats['monthly_revenue'])}")
    print(f"Clients                      : {stats['total_clients']}")
    print(f"Produits actifs              : {stats['total_products']}")
    print(f"Produits en stock bas        : {stats['low_stock_products']}")
    print(f"Ventes sur la période        : {stats['total_sales']}")
    print(f"Factures en attente          : {stats['pending_invoices']}")
    print(f"Factures en retard           : {stats['overdue_invoices']}")
    if stats['top_products']:
        print("Meilleurs produits:")
        for product in stats['top_products']:
            print(f"  - {product['product_name']}: {format_currency(product['revenue'])}")
    return 0


def cmd_convert_quote(args) -> int:
    response = invoke("generate-invoice-from-quote", args.quote_id)
    if response.get("success"):
        data = response["data"]
        return _report(response, f"Facture {data['invoice_number']} créée (vente #{data['sale_id']})")
    return _report(response)


def cmd_invoice_sale(args) -> int:
    response = invoke("generate-invoice-from-sale", args.sale_id)
    if response.get("success"):
        return _report(response, f"Facture {response['data']['invoice_number']} créée")
    return _report(response)


def cmd_export_db(args) -> int:
    response = invoke("export-database")
    if response.get("success"):
        return _report(response, f"Base exportée: {response['data']['path']}")
    return _report(response)


def cmd_import_db(args) -> int:
    response = invoke("import-database", args.path)
    if response.get("success"):
        return _report(response, response['data']['message'])
    return _report(response)


def cmd_pdf(args) -> int:
    response = invoke("generate-pdf", args.kind, args.document_id, args.output)
    return _report(response, f"PDF généré: {args.output}")


def cmd_excel(args) -> int:
    exporters = {
        "clients": ("get-clients", export_clients_to_excel),
        "invoices": ("get-invoices", export_invoices_to_excel),
        "stock": ("get-products", export_stock_to_excel),
    }
    channel, exporter = exporters[args.what]
    response = invoke(channel)
    if not response.get("success"):
        return _report(response)
    exporter(response["data"], args.output)
    print(f"Export Excel généré: {args.output}")
    return 0


def cmd_movements(args) -> int:
    try:
        generate_stock_movements_excel(args.start, args.end, args.output)
    except ValueError:
        print("Erreur: les dates doivent être au format AAAA-MM-JJ", file=sys.stderr)
        return 1
    print(f"Rapport des mouvements généré: {args.output}")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="finoria",
        description="Finoria Gestion - gestion commerciale (ventes, devis, factures, stock)"
    )
    parser.add_argument("--config", help="Chemin du fichier config.ini")
    parser.add_argument("--log-level", help="Niveau de journalisation (DEBUG, INFO, ...)")
    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("init", help="Créer ou réparer la base de données")
    p.set_defaults(func=cmd_init)

    p = sub.add_parser("dashboard", help="Statistiques du tableau de bord")
    p.add_argument("--range", default="30", help="Période en jours: 7, 30, 90 ou 365")
    p.add_argument("--json", action="store_true", help="Sortie JSON complète")
    p.set_defaults(func=cmd_dashboard)

    p = sub.add_parser("convert-quote", help="Convertir un devis en facture")
    p.add_argument("quote_id", type=int)
    p.set_defaults(func=cmd_convert_quote)

    p = sub.add_parser("invoice-sale", help="Générer la facture d'une vente")
    p.add_argument("sale_id", type=int)
    p.set_defaults(func=cmd_invoice_sale)

    p = sub.add_parser("export-db", help="Exporter la base de données")
    p.set_defaults(func=cmd_export_db)

    p = sub.add_parser("import-db", help="Importer une base de données")
    p.add_argument("path")
    p.set_defaults(func=cmd_import_db)

    p = sub.add_parser("pdf", help="Générer le PDF d'un document")
    p.add_argument("kind", choices=sorted(DOCUMENT_KINDS))
    p.add_argument("document_id", type=int)
    p.add_argument("output")
    p.set_defaults(func=cmd_pdf)

    p = sub.add_parser("excel", help="Export Excel")
    p.add_argument("what", choices=["clients", "invoices", "stock"])
    p.add_argument("output")
    p.set_defaults(func=cmd_excel)

    p = sub.add_parser("movements", help="Rapport Excel des mouvements de stock")
    p.add_argument("start", help="Date de début AAAA-MM-JJ")
    p.add_argument("end", help="Date de fin AAAA-MM-JJ")
    p.add_argument("output")
    p.set_defaults(func=cmd_movements)

    return parser


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    if args.config:
        os.environ["FINORIA_CONFIG"] = args.config
    setup_logging(level=args.log_level)

    try:
        return args.func(args)
    except Exception as e:
        logger.exception("Erreur critique")
        print(f"Erreur critique: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
