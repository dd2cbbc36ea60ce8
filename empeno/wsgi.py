"""
WSGI config for the empeño backend.
"""

import os

from django.core.wsgi import get_wsgi_application

os.environ.setdefault('DJANGO_SETTINGS_MODULE', 'empeno.settings')

application = get_wsgi_application()
