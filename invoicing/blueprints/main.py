"""Main blueprint with health check endpoints."""
from flask import Blueprint, jsonify, current_app
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from invoicing.database import get_session
from invoicing.exceptions import StorageUnavailableError
from invoicing.services.numbering_service import get_allocator

main_bp = Blueprint('main', __name__)


@main_bp.route('/health')
def health():
    """
    Health check endpoint that validates database connection.

    Returns:
        200: Healthy (DB connected)
        503: Unhealthy (DB error)
    """
    try:
        session = get_session()
        row = session.execute(text("SELECT 1 as health_check")).fetchone()

        if row and row[0] == 1:
            return jsonify({
                'status': 'healthy',
                'database': 'connected',
                'message': 'Database connection successful'
            }), 200

        return jsonify({
            'status': 'unhealthy',
            'database': 'error',
            'message': 'Unexpected query result'
        }), 503

    except SQLAlchemyError as e:
        get_session().rollback()
        current_app.logger.error(f"Health check failed: {e}")
        return jsonify({
            'status': 'unhealthy',
            'database': 'disconnected',
            'error': str(e),
            'message': 'Failed to connect to database'
        }), 503


@main_bp.route('/health/counter')
def health_counter():
    """Invoice counter backend reachability."""
    try:
        next_number = get_allocator().peek()
    except StorageUnavailableError as e:
        return jsonify({'status': 'unhealthy', 'counter': 'unavailable', 'message': e.message}), 503

    return jsonify({
        'status': 'healthy',
        'counter': current_app.config.get('INVOICE_COUNTER_BACKEND', 'sql'),
        'next_invoice_number': next_number
    }), 200
