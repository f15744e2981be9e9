"""
Flask CLI commands for single database multi-tenant system
"""

import click
from flask import Flask
from db_single import create_school, list_schools, get_session
from init_db import run_on_startup
from models import User, Tenant, USER_ROLES
import logging
from datetime import datetime

logger = logging.getLogger(__name__)


def register_cli_commands(app: Flask):
    """Register CLI commands with the Flask app"""

    @app.cli.command("setup-db")
    def setup_db_command():
        """Create database, tables, and default admin user"""
        click.echo("🚀 Setting up database...")
        if run_on_startup():
            click.echo("✅ Database setup completed successfully!")
        else:
            click.echo("❌ Database setup failed!")

    @app.cli.command("add-school")
    @click.option("--slug", required=True, help="URL-friendly school identifier (e.g., xyz)")
    @click.option("--name", required=True, help="Full school name (e.g., 'XYZ Public School')")
    def add_school_command(slug, name):
        """Add a new school to the system"""
        click.echo(f"🏫 Creating school: {name} ({slug})")

        success, message = create_school(slug, name)

        if success:
            click.echo(f"✅ {message}")
            click.echo(f"🌐 API root: /{slug}/api/")
        else:
            click.echo(f"❌ {message}")

    @app.cli.command("list-schools")
    def list_schools_command():
        """List all schools in the system"""
        schools = list_schools()
        if not schools:
            click.echo("📭 No schools found")
            return

        click.echo("🏫 Schools in system:")
        click.echo("-" * 60)
        for school in schools:
            click.echo(f"  {school.name}")
            click.echo(f"    Slug: {school.slug}")
            click.echo(f"    Status: {'Active' if school.is_active else 'Inactive'}")
            click.echo("-" * 60)

    @app.cli.command("create-user")
    @click.option("--slug", required=True, help="School slug")
    @click.option("--username", required=True, help="Username")
    @click.option("--email", required=True, help="Email")
    @click.option("--password", required=True, help="Password")
    @click.option("--role", required=True, type=click.Choice([r for r in USER_ROLES if r != 'super_admin']))
    @click.option("--first-name", default="", help="First name")
    @click.option("--last-name", default="", help="Last name")
    def create_user_command(slug, username, email, password, role, first_name, last_name):
        """Create a school user with one of the workflow roles"""
        session = get_session()
        try:
            school = session.query(Tenant).filter_by(slug=slug).first()
            if not school:
                click.echo(f"❌ School with slug '{slug}' not found")
                return

            existing = session.query(User).filter_by(username=username, tenant_id=school.id).first()
            if existing:
                click.echo(f"❌ Username '{username}' already exists in {school.name}")
                return

            user = User(
                tenant_id=school.id,
                username=username,
                email=email,
                first_name=first_name,
                last_name=last_name,
                role=role,
                is_active=True
            )
            user.set_password(password)

            session.add(user)
            session.commit()

            click.echo(f"✅ {role} '{username}' created for {school.name}")
            click.echo(f"   Login URL: /{slug}/login")

        except Exception as e:
            session.rollback()
            click.echo(f"❌ Failed to create user: {e}")
        finally:
            session.close()

    # ===== RISK MONITOR COMMANDS =====

    @app.cli.command("evaluate-risk-alerts")
    @click.option("--slug", help="Only evaluate this school")
    def evaluate_risk_alerts_command(slug):
        """Evaluate risk rules and raise new alerts (for cron jobs)"""
        from risk_alert_monitor import evaluate_all_tenants, evaluate_tenant_risks, risk_settings
        settings = risk_settings(app.config)

        click.echo(f"🔎 Evaluating risk alerts at {datetime.utcnow().isoformat()}...")

        if slug:
            session = get_session()
            try:
                school = session.query(Tenant).filter_by(slug=slug, is_active=True).first()
            finally:
                session.close()
            if not school:
                click.echo(f"❌ School with slug '{slug}' not found")
                return
            created = evaluate_tenant_risks(school.id, settings=settings)
            click.echo(f"✅ {school.name}: {created} new alert(s)")
            return

        evaluated, created, errors = evaluate_all_tenants(settings=settings)
        click.echo(f"✅ Evaluated {evaluated} school(s), raised {created} new alert(s)")

        if errors:
            click.echo("⚠️  Errors encountered:")
            for error in errors:
                click.echo(f"   - {error}")

    @app.cli.command("list-risk-alerts")
    @click.option("--slug", required=True, help="School slug")
    @click.option("--status", type=click.Choice(['active', 'resolved']), default='active')
    def list_risk_alerts_command(slug, status):
        """List risk alerts for a school"""
        from risk_alert_monitor import list_risk_alerts

        session = get_session()
        try:
            school = session.query(Tenant).filter_by(slug=slug).first()
            if not school:
                click.echo(f"❌ School with slug '{slug}' not found")
                return

            alerts = list_risk_alerts(session, school.id, status=status)
            if not alerts:
                click.echo(f"📭 No {status} risk alerts")
                return

            click.echo(f"🚨 {status.title()} risk alerts for {school.name}:")
            click.echo("-" * 80)
            for alert in alerts:
                click.echo(f"  [{alert.severity.value.upper()}] {alert.title}")
                click.echo(f"    Type: {alert.alert_type.value}")
                click.echo(f"    Entity: {alert.entity_type} #{alert.entity_id} ({alert.entity_name})")
                click.echo(f"    Raised: {alert.created_at:%Y-%m-%d %H:%M}")
                click.echo("-" * 80)
        finally:
            session.close()

    @app.cli.command("start-risk-monitor")
    @click.option("--interval", default=300, help="Evaluation interval in seconds (default: 300)")
    def start_risk_monitor_command(interval):
        """Start the background risk monitor (blocking - for development)"""
        from risk_alert_monitor import start_background_monitor, stop_background_monitor, risk_settings
        import time

        click.echo(f"🚀 Starting risk monitor (evaluating every {interval}s)")
        click.echo("   Press Ctrl+C to stop...")

        start_background_monitor(interval, risk_settings(app.config))

        # Keep the main thread alive
        try:
            while True:
                time.sleep(1)
        except KeyboardInterrupt:
            stop_background_monitor()
            click.echo("\n👋 Risk monitor stopped")


# Usage examples for documentation
USAGE_EXAMPLES = """
# Setup database (run once)
flask setup-db

# Add a new school
flask add-school --slug "xyz" --name "XYZ Public School"

# Create workflow users
flask create-user --slug "xyz" --username "hod.math" --email "hod@xyz.edu" --password "secret" --role hod
flask create-user --slug "xyz" --username "principal" --email "p@xyz.edu" --password "secret" --role principal

# Evaluate risk alerts (cron)
flask evaluate-risk-alerts
flask evaluate-risk-alerts --slug "xyz"

# Show active alerts
flask list-risk-alerts --slug "xyz"
"""

if __name__ == "__main__":
    print("Flask CLI Commands for Single Database Multi-Tenant System")
    print("=" * 60)
    print(USAGE_EXAMPLES)
