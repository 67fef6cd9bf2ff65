#!/usr/bin/env python3
"""
Residency Desk — Sample Data Generator
Generates a society with residents, committee members, technicians and a
history of issues that contains a few recurring problems (same category,
same block, several reports in the last 30 days).

Usage:
    python scripts/generate-sample-data.py
    python scripts/generate-sample-data.py --issues 120 --output sample-data.json
    python scripts/generate-sample-data.py --seed-db      # insert into DATABASE_URL
"""

import argparse
import asyncio
import json
import random
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, Dict


# ── Configuration ───────────────────────────────────────────

BLOCKS = ["A1", "A2", "B1", "B2", "C1", "C2"]
AREAS = ["Main Gate", "Clubhouse", "Parking Level 1", "Garden", "Swimming Pool"]
CATEGORIES = [
    "sanitation", "security", "water", "electricity", "elevator", "noise",
    "parking", "maintenance", "cleaning", "pest_control", "landscaping", "fire_safety",
]
PRIORITIES = ["low", "medium", "high", "urgent"]
SPECIALIZATIONS = ["plumbing", "electrical", "elevator", "carpentry", "pest_control", "housekeeping"]

TITLES = {
    "water": ["Water leakage in bathroom", "Low water pressure", "Water tank overflow", "Pipe burst near lift"],
    "electricity": ["Power outage in corridor", "Flickering lights in lobby", "Tripping breaker"],
    "elevator": ["Lift stuck between floors", "Lift door not closing", "Lift making noise"],
    "sanitation": ["Garbage not collected", "Drain blocked", "Foul smell from drain"],
    "security": ["Gate left unattended", "CCTV camera not working", "Unknown visitor in parking"],
}
DEFAULT_TITLES = ["General maintenance request", "Needs inspection", "Damage reported"]

# (category, block) pairs seeded as recurring problems
RECURRING = [("water", "A1", 6), ("elevator", "B2", 3), ("sanitation", "C1", 4)]

FIRST_NAMES = ["Asha", "Ravi", "Meera", "Tariq", "Uma", "Kiran", "Neha", "Arjun", "Divya", "Farhan",
               "Isha", "Vikram", "Lata", "Sameer", "Pooja", "Rahul", "Anjali", "Deepak", "Sneha", "Imran"]
LAST_NAMES = ["Sharma", "Iyer", "Khan", "Patel", "Reddy", "Nair", "Gupta", "Das", "Joshi", "Menon"]


class SampleDataGenerator:
    """Generates realistic sample data for Residency Desk."""

    def __init__(self, seed: int = 42):
        random.seed(seed)
        self.seed = seed
        self.now = datetime.now(timezone.utc)

    def _uuid(self) -> str:
        return str(uuid.uuid4())

    def _days_ago(self, low: int, high: int) -> datetime:
        return self.now - timedelta(days=random.randint(low, high), hours=random.randint(0, 23))

    def generate_user(self, role: str, index: int) -> Dict[str, Any]:
        first, last = random.choice(FIRST_NAMES), random.choice(LAST_NAMES)
        return {
            "id": self._uuid(),
            "name": f"{first} {last}",
            "email": f"{first.lower()}.{last.lower()}.{role}{index}@residency.test",
            "phone_number": f"+9198{random.randint(10000000, 99999999)}",
            "is_mobile_verified": random.random() > 0.4,
            "role": role,
            "block_number": random.choice(BLOCKS) if role == "resident" else None,
            "specializations": random.sample(SPECIALIZATIONS, 2) if role == "technician" else [],
        }

    def generate_issue(
        self, reporter: Dict[str, Any], category: str, created_at: datetime, block: str = None
    ) -> Dict[str, Any]:
        status = random.choice(["new", "assigned", "in_progress", "resolved", "resolved", "closed"])
        resolved_at = None
        if status in ("resolved", "closed"):
            resolved_at = created_at + timedelta(days=random.randint(1, 6))
        use_area = block is None and random.random() < 0.3
        return {
            "id": self._uuid(),
            "title": random.choice(TITLES.get(category, DEFAULT_TITLES)),
            "description": "Reported via the resident app.",
            "category": category,
            "priority": random.choice(PRIORITIES),
            "status": status,
            "block_number": None if use_area else (block or random.choice(BLOCKS)),
            "area": random.choice(AREAS) if use_area else None,
            "reported_by": reporter["id"],
            "created_at": created_at,
            "resolved_at": resolved_at,
            "cost": round(random.uniform(100, 2500), 2) if resolved_at else None,
        }

    def generate_all(self, counts: Dict[str, int]) -> Dict[str, Any]:
        residents = [self.generate_user("resident", i) for i in range(counts["residents"])]
        committee = [self.generate_user("committee", i) for i in range(counts["committee"])]
        technicians = [self.generate_user("technician", i) for i in range(counts["technicians"])]

        issues = [
            self.generate_issue(random.choice(residents), random.choice(CATEGORIES), self._days_ago(0, 85))
            for _ in range(counts["issues"])
        ]
        for category, block, recent in RECURRING:
            for _ in range(recent):
                issues.append(self.generate_issue(random.choice(residents), category, self._days_ago(0, 28), block))
            issues.append(self.generate_issue(random.choice(residents), category, self._days_ago(35, 80), block))

        return {
            "generated_at": self.now.isoformat(),
            "generator": "Residency Desk Sample Data Generator v1.0",
            "seed": self.seed,
            "counts": {
                "users": len(residents) + len(committee) + len(technicians),
                "issues": len(issues),
            },
            "data": {
                "users": residents + committee + technicians,
                "issues": issues,
            },
        }


async def seed_database(data: Dict[str, Any]) -> None:
    from database import get_db_context, init_db
    from models import Issue, IssueCategory, IssuePriority, IssueStatus, User, UserRole

    await init_db()
    async with get_db_context() as db:
        for user in data["users"]:
            db.add(User(**{**user, "role": UserRole(user["role"])}))
        await db.flush()
        for issue in data["issues"]:
            db.add(Issue(**{
                **issue,
                "category": IssueCategory(issue["category"]),
                "priority": IssuePriority(issue["priority"]),
                "status": IssueStatus(issue["status"]),
            }))


# ── CLI ─────────────────────────────────────────────────────

def main():
    parser = argparse.ArgumentParser(description="Residency Desk Sample Data Generator")
    parser.add_argument("--residents", type=int, default=40, help="Number of residents")
    parser.add_argument("--committee", type=int, default=3, help="Number of committee members")
    parser.add_argument("--technicians", type=int, default=6, help="Number of technicians")
    parser.add_argument("--issues", type=int, default=80, help="Background issues (recurring clusters are added on top)")
    parser.add_argument("--output", type=str, default="sample-data.json", help="Output file")
    parser.add_argument("--seed", type=int, default=42, help="Random seed")
    parser.add_argument("--seed-db", action="store_true", help="Insert into DATABASE_URL instead of writing JSON")
    args = parser.parse_args()

    generator = SampleDataGenerator(seed=args.seed)
    data = generator.generate_all({
        "residents": args.residents,
        "committee": args.committee,
        "technicians": args.technicians,
        "issues": args.issues,
    })

    counts = data["counts"]
    if args.seed_db:
        asyncio.run(seed_database(data["data"]))
        print(f"✅ Seeded database: {counts['users']} users, {counts['issues']} issues")
        return

    with open(args.output, "w") as f:
        json.dump(data, f, indent=2, default=str)

    print(f"✅ Sample data generated: {args.output}")
    print(f"   Users: {counts['users']}")
    print(f"   Issues: {counts['issues']}")
    print(f"   Recurring clusters: {len(RECURRING)}")


if __name__ == "__main__":
    main()
