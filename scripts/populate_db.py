import os
import sys
import django
import random
from decimal import Decimal
from django.utils.text import slugify
from faker import Faker

# Add project root to Python path
sys.path.append(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

# Set up Django environment
os.environ.setdefault('DJANGO_SETTINGS_MODULE', 'fixers_marketplace.settings')
django.setup()

from core.models import (
    User, Agent, AgentFixer, Category, Subcategory, Neighborhood,
    FixerService, ServiceRequest, Gig, GigPackage, Quote
)
from core import orders, quotes
from core.exceptions import MarketplaceError

fake = Faker()

CATEGORIES = {
    'Plumbing': ['Leak Repair', 'Pipe Installation', 'Water Heater'],
    'Electrical': ['Wiring', 'Socket Repair', 'Inverter Installation'],
    'Carpentry': ['Furniture Repair', 'Door Fitting', 'Roofing'],
    'Cleaning': ['Home Cleaning', 'Post-construction Cleaning'],
}

NEIGHBORHOODS = [
    ('Yaba', 'Lagos', 'Lagos'),
    ('Surulere', 'Lagos', 'Lagos'),
    ('Lekki Phase 1', 'Lagos', 'Lagos'),
    ('Wuse 2', 'Abuja', 'FCT'),
    ('Garki', 'Abuja', 'FCT'),
]


def phone_number():
    return '080' + ''.join(random.choice('0123456789') for _ in range(8))


def create_taxonomy():
    print("Creating categories and neighborhoods...")
    subcategories = []
    for name, children in CATEGORIES.items():
        category, _ = Category.objects.get_or_create(name=name, defaults={'slug': slugify(name)})
        for child in children:
            subcategory, _ = Subcategory.objects.get_or_create(category=category, name=child)
            subcategories.append(subcategory)

    neighborhoods = [
        Neighborhood.objects.get_or_create(name=name, city=city, state=state)[0]
        for name, city, state in NEIGHBORHOODS
    ]
    print(f"Created {len(subcategories)} subcategories and {len(neighborhoods)} neighborhoods.")
    return subcategories, neighborhoods


def create_user(role):
    email = fake.unique.email()
    return User.objects.create_user(
        username=email.split('@')[0],
        email=email,
        password='password123',
        first_name=fake.first_name(),
        last_name=fake.last_name(),
        phone_number=phone_number(),
        roles=[role],
    )


def create_users(num_clients=10, num_fixers=8, num_agents=2):
    print(f"Creating {num_clients} clients, {num_fixers} fixers and {num_agents} agents...")

    clients = [create_user(User.ROLE_CLIENT) for _ in range(num_clients)]
    fixers = [create_user(User.ROLE_FIXER) for _ in range(num_fixers)]
    agents = [
        Agent.objects.create(
            user=create_user(User.ROLE_AGENT),
            commission_percentage=Decimal(random.choice(['5', '10', '12.5'])),
        )
        for _ in range(num_agents)
    ]

    # Roughly half of the fixers are managed by an agent
    for fixer in fixers:
        if agents and random.random() < 0.5:
            AgentFixer.objects.create(agent=random.choice(agents), fixer=fixer)

    if not User.objects.filter(username='admin').exists():
        User.objects.create_superuser(
            username='admin',
            email='admin@fixers.local',
            password='admin123',
            roles=[User.ROLE_ADMIN],
        )

    print(f"Created {len(clients)} clients, {len(fixers)} fixers and {len(agents)} agents.")
    return clients, fixers, agents


def create_fixer_services(fixers, subcategories, neighborhoods):
    print("Creating fixer services...")
    services = []
    for fixer in fixers:
        for subcategory in random.sample(subcategories, random.randint(1, 3)):
            service = FixerService.objects.create(fixer=fixer, subcategory=subcategory)
            service.neighborhoods.set(random.sample(neighborhoods, random.randint(1, len(neighborhoods))))
            services.append(service)
    print(f"Created {len(services)} fixer services.")
    return services


def create_gigs(fixers, subcategories):
    print("Creating gigs...")
    gigs = []
    for fixer in fixers:
        link = AgentFixer.objects.filter(fixer=fixer).first()
        for _ in range(random.randint(0, 2)):
            gig = Gig.objects.create(
                fixer=fixer,
                agent=link.agent if link else None,
                subcategory=random.choice(subcategories),
                title=fake.sentence(nb_words=5).rstrip('.'),
                description=fake.paragraph(),
                status=Gig.STATUS_ACTIVE,
            )
            for name, multiplier, days in (('Basic', 1, 3), ('Standard', 2, 5), ('Premium', 4, 7)):
                GigPackage.objects.create(
                    gig=gig,
                    name=name,
                    price=Decimal(random.randint(5, 20) * 1000 * multiplier),
                    delivery_days=days,
                    revisions=multiplier,
                )
            gigs.append(gig)
    print(f"Created {len(gigs)} gigs.")
    return gigs


def create_service_requests(clients, services):
    print("Creating service requests...")
    requests = []
    for client in clients:
        for _ in range(random.randint(0, 2)):
            service = random.choice(services)
            service_request = ServiceRequest.objects.create(
                client=client,
                subcategory=service.subcategory,
                neighborhood=random.choice(list(service.neighborhoods.all())),
                title=fake.sentence(nb_words=6).rstrip('.'),
                description=fake.paragraph(),
                status=ServiceRequest.STATUS_APPROVED,
            )
            requests.append(service_request)
    print(f"Created {len(requests)} service requests.")
    return requests


def create_quotes(service_requests):
    print("Creating quotes...")
    created = []
    for service_request in service_requests:
        eligible = FixerService.objects.filter(
            subcategory=service_request.subcategory,
            neighborhoods=service_request.neighborhood,
            is_active=True,
        ).select_related('fixer')
        for service in eligible[:3]:
            if random.random() < 0.3:
                terms = quotes.QuoteTerms(
                    quote_type=Quote.TYPE_INSPECTION_REQUIRED,
                    inspection_fee=Decimal(random.choice([1000, 2000, 3000])),
                )
            else:
                terms = quotes.QuoteTerms(
                    labor_cost=Decimal(random.randint(5, 50) * 1000),
                    material_cost=Decimal(random.randint(0, 20) * 500),
                    estimated_duration=f"{random.randint(1, 5)} days",
                )
            try:
                created.append(quotes.submit_quote(service_request.pk, service.fixer, terms))
            except MarketplaceError as e:
                print(f"  Skipped quote: {e.detail}")
    print(f"Created {len(created)} quotes.")
    return created


def accept_some_quotes(created_quotes):
    print("Accepting quotes...")
    accepted = 0
    for quote in created_quotes:
        if quote.is_inspection() or random.random() < 0.5:
            continue
        try:
            result = quotes.accept_quote(quote.pk, quote.request.client)
        except MarketplaceError as e:
            print(f"  Skipped acceptance: {e.detail}")
            continue
        if result.order is not None:
            accepted += 1
    print(f"Accepted {accepted} quotes.")


def place_gig_orders(clients, gigs):
    print("Placing gig orders...")
    placed = []
    for client in clients:
        if not gigs or random.random() < 0.5:
            continue
        gig = random.choice(gigs)
        package = random.choice(list(gig.packages.all()))
        order = orders.place_gig_order(gig.pk, package.pk, client, requirements=fake.sentence())
        if random.random() < 0.5:
            orders.start_order(order.pk, gig.fixer)
        placed.append(order)
    print(f"Placed {len(placed)} gig orders.")
    return placed


def main():
    print("Starting database population...")

    subcategories, neighborhoods = create_taxonomy()
    clients, fixers, agents = create_users(num_clients=15, num_fixers=10, num_agents=3)
    services = create_fixer_services(fixers, subcategories, neighborhoods)
    gigs = create_gigs(fixers, subcategories)

    service_requests = create_service_requests(clients, services)
    accept_some_quotes(create_quotes(service_requests))
    place_gig_orders(clients, gigs)

    print("Database population completed successfully!")


if __name__ == '__main__':
    main()
