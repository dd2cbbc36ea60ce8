"""
URL configuration for the empeño backend.
"""

from django.urls import path, include

urlpatterns = [
    # Loans app: accrual, signatures, payments, lifecycle
    path('loans/', include(('loans.urls', 'loans'), namespace='loans')),
]
