# services/seed.py
"""
Sample data for development databases.

Run with `flask seed`. Existing users, newsletters and subscriptions are
removed first.
"""

import logging
from datetime import datetime
from typing import Any, Dict, List

from werkzeug.security import generate_password_hash

from core.database_adapter import DatabaseAdapter

logger = logging.getLogger(__name__)

ADMIN_EMAIL = 'admin@example.com'
ADMIN_PASSWORD = 'password123'

SAMPLE_NEWSLETTERS: List[Dict[str, Any]] = [
    {
        'title': 'Welcome to Our Newsletter!',
        'excerpt': "Thank you for subscribing to our newsletter. Here's what you can expect from us.",
        'content': (
            "<h1>Welcome to Our Newsletter!</h1>"
            "<p>We're thrilled to have you as part of our community. Here is what every issue brings:</p>"
            "<ul>"
            "<li><strong>Industry Insights</strong>: the latest trends and developments</li>"
            "<li><strong>Tips &amp; Tricks</strong>: practical advice you can use right away</li>"
            "<li><strong>Community Highlights</strong>: great work from our readers</li>"
            "</ul>"
            "<p>No spam, just quality information. Thank you for joining us!</p>"
        ),
        'published': True,
        'published_at': datetime(2025, 6, 1),
    },
    {
        'title': 'Top 10 React Best Practices for 2025',
        'excerpt': 'Discover the essential React practices every developer should follow this year.',
        'content': (
            "<h1>Top 10 React Best Practices for 2025</h1>"
            "<p>Staying current with best practices keeps applications maintainable.</p>"
            "<ol>"
            "<li>Use functional components and hooks</li>"
            "<li>Add error boundaries</li>"
            "<li>Memoize expensive components</li>"
            "<li>Adopt TypeScript</li>"
            "<li>Prefer composition over inheritance</li>"
            "<li>Pick state management that fits</li>"
            "<li>Split code with dynamic imports</li>"
            "<li>Test components</li>"
            "<li>Extract custom hooks</li>"
            "<li>Follow accessibility guidelines</li>"
            "</ol>"
        ),
        'published': True,
        'published_at': datetime(2025, 6, 8),
    },
    {
        'title': 'Building Scalable APIs with Node.js',
        'excerpt': 'Learn how to design and implement APIs that can handle growth and scale effectively.',
        'content': (
            "<h1>Building Scalable APIs with Node.js</h1>"
            "<h2>Key Principles</h2>"
            "<ul>"
            "<li>Design for statelessness</li>"
            "<li>Cache frequently accessed data</li>"
            "<li>Index the database and pool connections</li>"
            "<li>Rate limit clients</li>"
            "<li>Monitor and log everything</li>"
            "</ul>"
        ),
        'published': False,
    },
]

SAMPLE_SUBSCRIBERS = [
    'subscriber1@example.com',
    'subscriber2@example.com',
    'subscriber3@example.com',
    'test@example.com',
]


def seed_database(database: DatabaseAdapter) -> Dict[str, int]:
    """Replace all data with the sample set and return what was created"""
    logger.info(f"Seeding {database.database_type} database")

    database.purge()
    logger.info("Cleared existing data")

    database.create_user({
        'name': 'Admin User',
        'email': ADMIN_EMAIL,
        'password': generate_password_hash(ADMIN_PASSWORD),
        'role': 'admin',
    })
    logger.info(f"Created admin user {ADMIN_EMAIL}")

    for data in SAMPLE_NEWSLETTERS:
        database.create_newsletter(dict(data))
    logger.info(f"Created {len(SAMPLE_NEWSLETTERS)} sample newsletters")

    for email in SAMPLE_SUBSCRIBERS:
        database.create_subscription({'email': email})
    logger.info(f"Created {len(SAMPLE_SUBSCRIBERS)} sample subscriptions")

    return {
        'users': 1,
        'newsletters': len(SAMPLE_NEWSLETTERS),
        'subscriptions': len(SAMPLE_SUBSCRIBERS),
    }
