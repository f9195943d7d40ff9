import os
import sys
import django
import random
from decimal import Decimal
from faker import Faker

# Add project root to Python path
sys.path.append(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

# Set up Django environment
os.environ.setdefault('DJANGO_SETTINGS_MODULE', 'bicycle_marketplace.settings')
django.setup()

from core.availability import approve_listing
from core.exceptions import MarketplaceError
from core.metrics import NullMetrics
from core.models import User, Bicycle
from core.negotiation import NegotiationService
from core.orders import OrderWorkflow

fake = Faker()

BICYCLE_MODELS = [
    "Giant TCR Advanced", "Merida Scultura 400", "Trek Domane AL 2",
    "Specialized Allez", "Brompton M6L", "Tern Link B7",
    "Giant Escape 3", "KHS Flite 747", "Cannondale CAAD Optimo",
]

COUNTIES = ["Taipei", "New Taipei", "Taichung", "Tainan", "Kaohsiung", "Hualien", "Penghu"]

metrics = NullMetrics()
negotiation = NegotiationService(metrics=metrics)
workflow = OrderWorkflow(metrics=metrics)


def create_users(num_users=15):
    print(f"Creating {num_users} users and 1 admin...")

    users = []
    for _ in range(num_users):
        email = fake.unique.email()
        username = email.split('@')[0]
        user = User.objects.create_user(
            username=username,
            email=email,
            password='password123',
            first_name=fake.first_name(),
            last_name=fake.last_name(),
        )
        users.append(user)

    admin = User.objects.create_user(
        username='marketplace_admin',
        email=fake.unique.email(),
        password='password123',
        is_staff=True,
    )

    print(f"Created {len(users)} users.")
    return users, admin


def create_bicycles(sellers, admin, per_seller=2):
    print("Creating bicycle listings...")
    bicycles = []

    for seller in sellers:
        for _ in range(random.randint(1, per_seller)):
            bicycle = Bicycle.objects.create(
                seller=seller,
                title=f"{random.choice(BICYCLE_MODELS)} ({fake.color_name()})",
                price=Decimal(random.randrange(3000, 60000, 500)),
            )
            # Most listings pass review; the rest stay pending
            if random.random() < 0.8:
                bicycle = approve_listing(bicycle.id, admin)
            bicycles.append(bicycle)

    print(f"Created {len(bicycles)} bicycles.")
    return bicycles


def delivery_address():
    return {
        'full_name': fake.name(),
        'phone_number': f"09{random.randint(10000000, 99999999)}",
        'county': random.choice(COUNTIES),
        'address_line1': fake.street_address(),
    }


def create_offers(users, bicycles):
    print("Creating offers...")
    offers = []

    for bicycle in bicycles:
        if bicycle.status != Bicycle.Status.AVAILABLE:
            continue
        buyers = [u for u in users if u != bicycle.seller]
        for buyer in random.sample(buyers, random.randint(0, 3)):
            amount = (bicycle.price * Decimal(random.uniform(0.7, 1.0))).quantize(Decimal('1'))
            offer = negotiation.create_offer(buyer, bicycle.seller, bicycle.id, amount, fake.sentence())
            offers.append(offer)

    print(f"Created {len(offers)} offers.")
    return offers


def settle_offers(offers):
    print("Accepting and rejecting offers...")
    orders = []

    for offer in offers:
        offer.refresh_from_db()
        if offer.offer_status != 'pending':
            continue
        choice = random.random()
        try:
            if choice < 0.3:
                decision = negotiation.accept_offer(offer.id, offer.recipient)
                if decision.order:
                    orders.append(decision.order)
            elif choice < 0.5:
                negotiation.reject_offer(offer.id, offer.recipient)
        except MarketplaceError as e:
            print(f"  Skipped offer {offer.id}: {e.detail}")

    print(f"Created {len(orders)} orders from offers.")
    return orders


def create_direct_orders(users, bicycles):
    print("Creating direct orders...")
    orders = []

    for bicycle in bicycles:
        bicycle.refresh_from_db()
        if bicycle.status != Bicycle.Status.AVAILABLE or random.random() < 0.6:
            continue
        buyer = random.choice([u for u in users if u != bicycle.seller])
        params = random.choice([
            {'shipping_method': 'self_pickup'},
            {'shipping_method': 'assisted_delivery', 'shipping_address': delivery_address()},
        ])
        orders.append(workflow.create_order(buyer, bicycle.id, params))

    print(f"Created {len(orders)} direct orders.")
    return orders


def progress_payments(orders, admin):
    print("Submitting and reviewing payment proofs...")
    completed = 0

    for order in orders:
        if random.random() < 0.3:
            continue
        workflow.submit_payment_proof(order.id, order.buyer, {
            'filename': f"transfer_{order.order_number}.jpg",
            'content_type': 'image/jpeg',
            'size': random.randint(50_000, 2_000_000),
            'account_last_five': f"{random.randint(0, 99999):05d}",
        })
        if random.random() < 0.7:
            workflow.review_payment_proof(order.id, admin, approve=True)
            if random.random() < 0.5:
                workflow.admin_approve_sale(order.id, admin)
                completed += 1

    print(f"Completed {completed} sales.")


def main():
    print("Starting database population...")

    # Create Users
    users, admin = create_users(num_users=20)

    # Create Listings
    bicycles = create_bicycles(users, admin)

    # Negotiate
    offers = create_offers(users, bicycles)
    offer_orders = settle_offers(offers)

    # Buy at listing price
    direct_orders = create_direct_orders(users, bicycles)

    # Pay and settle
    progress_payments(offer_orders + direct_orders, admin)

    print("Database population completed successfully!")

if __name__ == '__main__':
    main()
