"""
RAG URL routing.
"""
from django.urls import path

from apps.rag.views import ContextView, AskView, TitleView

urlpatterns = [
    path('context', ContextView.as_view(), name='rag-context'),
    path('ask', AskView.as_view(), name='rag-ask'),
    path('title', TitleView.as_view(), name='rag-title'),
]
