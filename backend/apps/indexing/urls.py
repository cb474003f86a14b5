"""
URL configuration for the indexing app.
"""
from django.urls import path
from . import views

app_name = 'indexing'

urlpatterns = [
    path('upload', views.upload_document, name='upload'),
    path('text', views.ingest_text, name='text'),
]
