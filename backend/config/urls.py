"""
URL configuration for AskDoc backend.
"""
from django.urls import path, include
from django.http import JsonResponse


def health_check(request):
    """Simple health check endpoint for Docker healthcheck."""
    return JsonResponse({'status': 'ok'})


urlpatterns = [
    path('api/health/', health_check, name='health_check'),

    # API routes
    path('api/ingest/', include('apps.indexing.urls')),
    path('api/rag/', include('apps.rag.urls')),
]
