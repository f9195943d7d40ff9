"""
WSGI config for bicycle_marketplace project.
"""

import os

from django.core.wsgi import get_wsgi_application

os.environ.setdefault('DJANGO_SETTINGS_MODULE', 'bicycle_marketplace.settings')

application = get_wsgi_application()
