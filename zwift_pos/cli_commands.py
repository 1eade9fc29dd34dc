"""
Flask CLI commands for POS maintenance.

Commands:
- flask init-db: Create all tables
- flask seed-demo: Load a small demo catalog
- flask retry-stock-sync: Retry failed post-sale stock updates
- flask low-stock: Print the low stock report
"""

import click
from decimal import Decimal
from zwift_pos.database import db_session, create_all
from zwift_pos.models import Category, Product, StoreSettings
from zwift_pos.services import inventory_alerts_service, stock_service
from zwift_pos.services.cache_service import get_cache
from zwift_pos.utils.formatters import format_currency

DEMO_CATALOG = [
    # name, barcode, category, price, purchase_price, stock, min_stock
    ('Mineral Water 1.5L', '6111000000011', 'Drinks', '6.00', '4.00', 48, 24),
    ('Orange Juice 1L', '6111000000028', 'Drinks', '14.50', '10.00', 6, 12),
    ('Ground Coffee 250g', '6111000000035', 'Grocery', '32.00', '24.50', 0, 5),
    ('Olive Oil 1L', '6111000000042', 'Grocery', '75.00', '58.00', 9, 10),
    ('Dish Soap 500ml', '6111000000059', 'Household', '12.00', None, 30, 10),
]


def init_cli_commands(app):
    """Register CLI commands with Flask app."""

    @app.cli.command('init-db')
    def init_db_command():
        """Create every table."""
        create_all()
        click.echo(click.style('Database tables created.', fg='green'))

    @app.cli.command('seed-demo')
    @click.option('--currency', default=None, help='Store currency code (e.g. USD, MAD)')
    @click.option('--tax-rate', default=None, help='Tax rate as a fraction (e.g. 0.2)')
    def seed_demo(currency, tax_rate):
        """Load a demo catalog and store settings (skips existing barcodes)."""
        try:
            categories = {}
            created = 0
            for name, barcode, category_name, price, cost, stock, min_stock in DEMO_CATALOG:
                if db_session.query(Product).filter_by(barcode=barcode).first():
                    continue
                category = categories.get(category_name) or db_session.query(Category).filter_by(name=category_name).first()
                if not category:
                    category = Category(name=category_name)
                    db_session.add(category)
                    db_session.flush()
                categories[category_name] = category

                db_session.add(Product(
                    name=name, barcode=barcode, category_id=category.id,
                    price=Decimal(price), purchase_price=Decimal(cost) if cost else None,
                    stock=stock, min_stock=min_stock, active=True,
                ))
                created += 1

            if not db_session.query(StoreSettings).first():
                db_session.add(StoreSettings(
                    tax_rate=Decimal(tax_rate or app.config.get('DEFAULT_TAX_RATE', '0')),
                    currency=(currency or app.config.get('DEFAULT_CURRENCY', 'USD')).upper(),
                ))

            db_session.commit()
            get_cache().invalidate_module('settings')
            click.echo(click.style(f'{created} demo products created.', fg='green'))
        except Exception as e:
            db_session.rollback()
            click.echo(click.style(f'Error seeding demo data: {e}', fg='red'))
            raise SystemExit(1) from e

    @app.cli.command('retry-stock-sync')
    def retry_stock_sync():
        """Retry every unresolved post-sale stock update."""
        pending = stock_service.list_sync_failures(db_session)
        if not pending:
            click.echo('No pending stock sync failures.')
            return

        resolved, failed = stock_service.retry_pending_failures(db_session)
        click.echo(f'Resolved: {resolved}')
        if failed:
            click.echo(click.style(f'Still failing: {failed}', fg='red'))
            raise SystemExit(1)

    @app.cli.command('low-stock')
    @click.option('--urgency', type=click.Choice(['all', 'critical', 'high', 'medium']), default='all')
    @click.option('--limit', default=50, show_default=True)
    @click.option('--currency', default=None, help='Currency used to display amounts')
    def low_stock(urgency, limit, currency):
        """Print products below their minimum stock."""
        report = inventory_alerts_service.get_low_stock_report(db_session, urgency_filter=urgency, limit=limit)
        code = currency or app.config.get('DEFAULT_CURRENCY', 'USD')

        if not report['data']:
            click.echo('No products below their minimum stock.')
            return

        for row in report['data']:
            click.echo(
                f"[{row['urgency_level']:<8}] {row['name']}: {row['current_stock']}/{row['min_stock']} "
                f"(need {row['stock_deficit']}, restock {format_currency(row['restock_value'], code)})"
            )
        summary = report['summary']
        click.echo(
            f"\n{summary['critical_count']} critical, {summary['high_count']} high, "
            f"{summary['medium_count']} medium. Restock value: "
            f"{format_currency(summary['total_restock_value'], code)}"
        )
