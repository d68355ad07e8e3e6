"""
Service Layer - Business Logic

Each service is a class of static methods running raw SQL through
marketplace.core.database and caching through marketplace.core.cache.

Author: TM3
Date: 2026-02-11
"""
from marketplace.services.vendor_service import VendorService
from marketplace.services.loyalty_service import LoyaltyService
from marketplace.services.batch_loyalty_service import BatchLoyaltyService
from marketplace.services.review_service import ReviewService
from marketplace.services.ab_test_service import ABTestService
from marketplace.services.settings_service import SettingsService
from marketplace.services.tax_service import TaxService
from marketplace.services.currency_service import CurrencyService
from marketplace.services.analytics_service import AnalyticsService
from marketplace.services.report_service import ReportService
from marketplace.services.notification_service import NotificationService
from marketplace.services.email_service import EmailService
from marketplace.services.search_service import SearchService
from marketplace.services.recommendation_service import RecommendationService
from marketplace.services.export_service import ExportService

__all__ = [
    'VendorService',
    'LoyaltyService',
    'BatchLoyaltyService',
    'ReviewService',
    'ABTestService',
    'SettingsService',
    'TaxService',
    'CurrencyService',
    'AnalyticsService',
    'ReportService',
    'NotificationService',
    'EmailService',
    'SearchService',
    'RecommendationService',
    'ExportService',
]
