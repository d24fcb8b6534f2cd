"""Populate a development database with companies, users and some history."""
import random
from decimal import Decimal

from faker import Faker

from mobifaktura.core.database import SessionLocal
from mobifaktura.core.security import get_password_hash
from mobifaktura.models import (
    BudgetRequest,
    Company,
    Invoice,
    InvoiceType,
    Notification,
    SaldoTransaction,
    User,
    UserCompanyPermission,
    UserRole,
)
from mobifaktura.services.advance_service import AdvanceService
from mobifaktura.services.budget_request_service import BudgetRequestService
from mobifaktura.services.invoice_service import InvoiceService

fake = Faker("pl_PL")
DEFAULT_PASSWORD = "Haslo1234"

db = SessionLocal()

try:
    print("🔄 Clearing existing data...")
    for model in (Notification, SaldoTransaction, BudgetRequest, Invoice, UserCompanyPermission, Company, User):
        db.query(model).delete()
    db.commit()
    print("✅ Data cleared.")

    print("🔄 Creating companies...")
    companies = [
        Company(name=fake.company(), nip=fake.numerify("##########"), address=fake.address().replace("\n", ", "))
        for _ in range(random.randint(4, 6))
    ]
    db.add_all(companies)
    db.commit()
    print(f"✅ Seeded {len(companies)} companies")

    print("🔄 Creating users...")
    password_hash = get_password_hash(DEFAULT_PASSWORD)
    admin = User(email="admin@mobifaktura.pl", name="Administrator", role=UserRole.admin, password_hash=password_hash)
    accountant = User(email="ksiegowa@mobifaktura.pl", name=fake.name(), role=UserRole.accountant, password_hash=password_hash)
    users = [
        User(email=fake.unique.email(), name=fake.name(), role=UserRole.user, password_hash=password_hash)
        for _ in range(random.randint(8, 12))
    ]
    db.add_all([admin, accountant] + users)
    db.commit()

    for user in users:
        for company in random.sample(companies, k=random.randint(1, len(companies))):
            db.add(UserCompanyPermission(user_id=user.id, company_id=company.id))
    db.commit()
    print(f"✅ Seeded {len(users) + 2} users (password: {DEFAULT_PASSWORD})")

    print("🔄 Creating budget requests, advances and invoices...")
    budget = BudgetRequestService(db)
    invoices = InvoiceService(db)
    advances = AdvanceService(db)
    for user in users:
        company = random.choice(user.company_permissions).company
        request = budget.create(
            user,
            company.id,
            Decimal(random.randint(200, 2000)),
            fake.sentence(nb_words=8),
        )
        if random.random() < 0.7:
            budget.review(request.id, "approve", accountant)

        if random.random() < 0.4:
            advance = advances.create_manual(
                accountant,
                user.id,
                company.id,
                Decimal(random.randint(100, 1500)),
                fake.sentence(nb_words=6),
            )
            advances.transfer(advance.id, accountant, transfer_number=fake.bothify("PRZ/####/??").upper())

        for _ in range(random.randint(1, 4)):
            invoice = invoices.submit(
                user,
                company_id=company.id,
                invoice_number=f"FV/{fake.unique.random_int(1000, 99999)}/2025",
                justification=fake.sentence(nb_words=10),
                invoice_type=InvoiceType.einvoice,
                kwota=Decimal(random.randint(1000, 90000)) / 100,
                ksef_number=fake.bothify("KSEF-########-????").upper(),
            )
            if random.random() < 0.5:
                invoices.claim(invoice.id, accountant)
                invoices.accept(invoice.id, accountant)
    print("✅ Seeding complete.")
except Exception as e:
    db.rollback()
    print(f"❌ Seeding failed: {e}")
    raise
finally:
    db.close()
