"""Initialize database with a sample campaign."""
import sys
from sqlalchemy.orm import Session
from funnellab.database import SessionLocal, engine, Base
from funnellab.models import Campaign
from funnellab.services.campaigns import CampaignService


def init_database():
    """Initialize database with a sample split-tested campaign."""
    print("Creating database tables...")
    Base.metadata.create_all(bind=engine)

    db: Session = SessionLocal()

    try:
        # Check if a campaign already exists
        existing_campaign = db.query(Campaign).first()
        if existing_campaign:
            print("✓ Database already initialized")
            return

        print("\nCreating sample campaign...")
        service = CampaignService(db)
        campaign = service.create_campaign(
            "launch",
            "Launch webinar",
            description="Headline A vs headline B on the opt-in page",
            cta_text="Book your call",
            cta_url="https://example.com/book",
            cta_appear_time=1200
        )
        print(f"✓ Created campaign: {campaign.slug} (id {campaign.id})")

        for name, is_control in (("Headline A", True), ("Headline B", False)):
            variation_set = service.add_variation_set(campaign.id, name, weight=1, is_control=is_control)
            print(f"✓ Created variation set: {variation_set.name} (weight {variation_set.weight})")

        print("\n" + "="*50)
        print("✓ Database initialized successfully!")
        print("="*50)
        print("\nTry a first visit:")
        print("  curl -i http://localhost:8000/funnel/c/launch")
        print("\n" + "="*50)

    except Exception as e:
        print(f"✗ Error initializing database: {e}")
        db.rollback()
        sys.exit(1)
    finally:
        db.close()


if __name__ == "__main__":
    init_database()
