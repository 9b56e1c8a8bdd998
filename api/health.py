from flask import Blueprint

from services.container import current_services

bp = Blueprint("health", __name__)

@bp.get("/health")
def health():
    """
    Health check
    ---
    tags:
      - Health
    responses:
      200:
        description: API is up
        schema:
          type: object
          properties:
            status:
              type: string
              example: ok
            version:
              type: string
              example: 1.0.0
            circuit:
              type: string
              example: CLOSED
    """
    breaker = current_services().pipeline.breaker
    return {"status": "ok", "version": "1.0.0", "circuit": breaker.state.value}, 200
