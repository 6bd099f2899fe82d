from __future__ import annotations  # Re-export generation_gateway public API

from .generation_gateway import GenerationGatewayError, HttpClient, HttpResponse, post_turn

__all__ = ["GenerationGatewayError", "HttpClient", "HttpResponse", "post_turn"]
