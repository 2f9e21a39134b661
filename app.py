#!/usr/bin/env python3
"""
Idiom Quest - Flask JSON API
Serves the learning, review and search screens from the local idiom store.
"""

import os
import sys
import logging
from typing import Any, Optional

from flask import Flask, jsonify, request

# Add the current directory to the path so we can import our modules
sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

from idiom_quest import config
from idiom_quest.errors import EmptyCatalog, IdiomStoreError, NotLearned, StoreOpenError, UnknownWord
from idiom_quest.service import IdiomQuest

logger = logging.getLogger(__name__)

app = Flask(__name__)

# Opened on first request, or injected by tests
quest: Optional[IdiomQuest] = None


def get_quest() -> IdiomQuest:
    global quest
    if quest is None:
        quest = IdiomQuest.open()
    return quest


@app.errorhandler(UnknownWord)
def handle_unknown_word(e: UnknownWord) -> Any:
    return jsonify({'status': 'error', 'error': 'unknown_word', 'message': str(e)}), 404


@app.errorhandler(NotLearned)
def handle_not_learned(e: NotLearned) -> Any:
    return jsonify({'status': 'error', 'error': 'not_learned', 'message': str(e)}), 409


@app.errorhandler(EmptyCatalog)
def handle_empty_catalog(e: EmptyCatalog) -> Any:
    return jsonify({'status': 'no_content', 'message': 'The idiom catalog is empty.'}), 404


@app.errorhandler(StoreOpenError)
def handle_store_open_error(e: StoreOpenError) -> Any:
    logger.error("Idiom store unavailable: %s", e)
    return jsonify({'status': 'error', 'error': 'store_unavailable', 'message': str(e)}), 503


@app.errorhandler(IdiomStoreError)
def handle_store_error(e: IdiomStoreError) -> Any:
    logger.exception("Idiom store error")
    return jsonify({'status': 'error', 'message': str(e)}), 500


@app.route('/api/daily')
def api_daily() -> Any:
    """Today's idiom and whether it has been learned."""
    q = get_quest()
    idiom = q.get_daily_idiom()
    return jsonify({'status': 'success', 'idiom': idiom.to_dict(), 'progress': q.get_progress(idiom.word).to_dict()})


@app.route('/api/idioms/<word>')
def api_idiom(word: str) -> Any:
    q = get_quest()
    idiom = q.get_idiom(word)
    return jsonify({'status': 'success', 'idiom': idiom.to_dict(), 'progress': q.get_progress(word).to_dict()})


@app.route('/api/idioms/<word>/toggle', methods=['POST'])
def api_toggle_learned(word: str) -> Any:
    record = get_quest().toggle_learned(word)
    return jsonify({'status': 'success', 'progress': record.to_dict()})


@app.route('/api/idioms/<word>/review', methods=['POST'])
def api_mark_reviewed(word: str) -> Any:
    record = get_quest().mark_reviewed(word)
    return jsonify({'status': 'success', 'progress': record.to_dict()})


@app.route('/api/learned')
def api_learned() -> Any:
    """Learned idioms; ?recent=1 limits to the last 7 days."""
    q = get_quest()
    recent = request.args.get('recent', '0') == '1'
    items = q.list_recently_learned() if recent else q.list_learned_idioms()
    return jsonify({'status': 'success', 'idioms': [item.to_dict() for item in items]})


@app.route('/api/due')
def api_due() -> Any:
    items = get_quest().list_due_for_review()
    return jsonify({'status': 'success', 'idioms': [item.to_dict() for item in items]})


@app.route('/api/random')
def api_random() -> Any:
    """Random idioms for the game screen (?count=4&exclude=word)."""
    count = request.args.get('count', default=4, type=int)
    exclude = request.args.getlist('exclude')
    idioms = get_quest().random_idioms(max(0, min(count, 20)), exclude=exclude)
    return jsonify({'status': 'success', 'idioms': [idiom.to_dict() for idiom in idioms]})


@app.route('/api/search')
def api_search() -> Any:
    query = request.args.get('q', '')
    results = get_quest().search(query)
    return jsonify({'status': 'success', 'query': query, 'results': [idiom.to_dict() for idiom in results]})


@app.route('/api/history')
def api_history() -> Any:
    recent = get_quest().recent_searches()
    return jsonify({'status': 'success', 'history': [entry.to_dict() for entry in recent]})


@app.route('/api/history/<path:query>', methods=['DELETE'])
def api_delete_history(query: str) -> Any:
    removed = get_quest().clear_search(query)
    return jsonify({'status': 'success', 'removed': removed})


@app.route('/api/progress')
def api_progress() -> Any:
    return jsonify(get_quest().summary())


if __name__ == '__main__':
    import argparse

    parser = argparse.ArgumentParser(description='Idiom Quest JSON API')
    parser.add_argument('--host', default='127.0.0.1', help='Host IP to bind to (default: 127.0.0.1)')
    parser.add_argument('--port', type=int, default=5000, help='Port to bind to (default: 5000)')
    parser.add_argument('--reference', help='Reference idiom database')
    parser.add_argument('--progress', help='Progress database')
    parser.add_argument('--debug', action='store_true', help='Enable debug mode')
    args = parser.parse_args()

    debug = args.debug or config.DEBUG_MODE
    config.configure_logging(debug)

    try:
        quest = IdiomQuest.open(args.reference, args.progress, background=True)
    except StoreOpenError as e:
        logger.error("Cannot start: %s", e)
        sys.exit(1)

    app.run(host=args.host, port=args.port, debug=debug)
