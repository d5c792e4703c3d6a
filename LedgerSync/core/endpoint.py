"""HTTP endpoint serving the remote store.

Exposes a :class:`~.service.SheetsStore` with the JSON sync protocol on a single
route. Every failure is answered with an error marker instead of an HTTP error,
so clients only have to inspect the body.
"""
import logging
from typing import Any, Dict, Optional

from flask import Flask, jsonify, request

from . import models
from .service import SheetsStore
from ..status import status


def handle_get(store: Any) -> Dict[str, Any]:
    """Read the full state.

    Returns:
        dict: The state payload, or ``{'error': message}``.
    """
    try:
        return store.read().to_payload()
    except status.BaseStatusException as ex:
        return {'error': str(ex)}
    except Exception as ex:
        logging.error(f'Unexpected error reading the remote store: {ex}', exc_info=True)
        return {'error': str(ex)}


def handle_post(store: Any, body: Any) -> Dict[str, Any]:
    """Overwrite the remote store with the posted state. Missing slices are written as empty.

    Returns:
        dict: ``{'result': 'success'}`` or ``{'result': 'error', 'error': message}``.
    """
    if not isinstance(body, dict):
        return {'result': 'error', 'error': 'Request body must be a JSON object.'}
    if body.get('action', 'sync') != 'sync':
        return {'result': 'error', 'error': f'Unknown action "{body.get("action")}".'}

    try:
        store.write(models.LedgerState.from_payload(body))
    except status.BaseStatusException as ex:
        return {'result': 'error', 'error': str(ex)}
    except Exception as ex:
        logging.error(f'Unexpected error writing the remote store: {ex}', exc_info=True)
        return {'result': 'error', 'error': str(ex)}
    return {'result': 'success'}


def create_app(store: Optional[Any] = None) -> Flask:
    """Create the endpoint application.

    Args:
        store: Object with ``read()`` and ``write(state)``. Defaults to a :class:`SheetsStore`
            using the application settings.
    """
    app = Flask(__name__)
    app.json.ensure_ascii = False
    app.extensions['ledgersync.store'] = store or SheetsStore()

    @app.route('/', methods=['GET', 'POST'])
    def index():
        _store = app.extensions['ledgersync.store']
        if request.method == 'POST':
            return jsonify(handle_post(_store, request.get_json(force=True, silent=True)))

        action = request.args.get('action', 'get')
        if action != 'get':
            return jsonify({'error': f'Unknown action "{action}".'})
        return jsonify(handle_get(_store))

    return app
