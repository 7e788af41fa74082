"""Web routes for samlsp."""

from flask import Blueprint, Flask

main_bp = Blueprint("main", __name__)


@main_bp.route("/health")
def health() -> dict[str, str]:
    """Health check endpoint (unauthenticated)."""
    return {"status": "healthy"}


def init_app(app: Flask) -> None:
    """Register blueprints with the Flask app."""
    from samlsp.web.saml import saml_bp

    app.register_blueprint(main_bp)
    app.register_blueprint(saml_bp)
