from django.contrib import admin
from django.urls import path, include
from django.conf import settings
from drf_spectacular.views import SpectacularAPIView
from rest_framework_simplejwt.views import TokenObtainPairView, TokenRefreshView

# ADMIN_URL must not start with a slash and must end with one
admin_url = settings.ADMIN_URL.strip("/") + "/"

urlpatterns = [
    path(admin_url, admin.site.urls),

    # Auth (JWT)
    path('api/v1/auth/token/', TokenObtainPairView.as_view(), name='token_obtain_pair'),
    path('api/v1/auth/token/refresh/', TokenRefreshView.as_view(), name='token_refresh'),

    # Core Apps
    path('api/v1/', include('apps.orders.urls')),
    path('api/v1/payment/', include('apps.payments.urls')),
    path('api/v1/utils/', include('apps.utils.urls')),

    # API schema
    path('api/v1/schema/', SpectacularAPIView.as_view(), name='schema'),
]
