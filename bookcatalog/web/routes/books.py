"""
Book routes for the Book Catalog Service.
"""

from flask import Blueprint, current_app, jsonify, request

from bookcatalog.reconcile.engine import RowProcessingError
from bookcatalog.reconcile.models import Action, MatchKind, ReconcileResult
from bookcatalog.reconcile.service import create_catalog_service_from_config, pricing_action
from bookcatalog.store.base import CatalogStoreError
from bookcatalog.utils.logging import get_logger

logger = get_logger(__name__)

books_bp = Blueprint('books', __name__, url_prefix='/api/books')

MATCH_MESSAGES = {
    MatchKind.NEW: "No matching book found.",
    MatchKind.DUPLICATE: "Book already exists with the same identifiers, title and author.",
    MatchKind.DUPLICATE_WITH_CONFLICTS: "Book already exists, but year or publisher name differ.",
    MatchKind.AUTHOR_CONFLICT: "Same book found but Author is different.",
    MatchKind.CONFLICT: "Same identifier found but Title/Author differ.",
}


def get_service():
    return create_catalog_service_from_config(current_app.config.get('CATALOG_CONFIG'))


def _read_record_payload(service):
    """Parse {bookData, pricingData, policy} from the request body."""
    payload = request.get_json(silent=True) or {}
    if not isinstance(payload, dict):
        return None, "request body must be a JSON object"
    book_data = payload.get('bookData')
    pricing_data = payload.get('pricingData')
    policy_options = payload.get('policy')

    if not isinstance(book_data, dict) or not isinstance(pricing_data, dict):
        return None, "bookData and pricingData are required"
    if policy_options is not None and not isinstance(policy_options, dict):
        return None, "policy must be an object"

    book, pricing = service.fields_from(book_data, pricing_data)
    if not book.is_valid:
        return None, "bookData needs a title or an isbn"
    if not pricing.source:
        return None, "pricingData.source is required"

    return (book, pricing, service.policy_from(policy_options)), None


def _result_body(result: ReconcileResult) -> dict:
    match = result.match
    return {
        'status': match.kind.value,
        'message': MATCH_MESSAGES[match.kind],
        'action': result.action.value,
        'conflictType': result.decision.conflict_type,
        'pricingAction': pricing_action(result),
        'match': match.to_dict(),
        'pricing': result.pricing.to_dict(),
        'bookId': match.existing_book.id if match.existing_book else None,
        'pricingId': result.pricing.existing_pricing.id if result.pricing.existing_pricing else None,
    }


@books_bp.route('/check', methods=['POST'])
def check_book():
    """Classify a book and its pricing against the catalog without writing."""
    service = get_service()
    parsed, error = _read_record_payload(service)
    if error:
        return jsonify({'success': False, 'error': error}), 400

    book, pricing, policy = parsed
    try:
        result = service.check(book, pricing, policy)
    except CatalogStoreError as e:
        logger.error("Book check failed", error=str(e))
        return jsonify({'success': False, 'error': str(e)}), 500

    return jsonify({'success': True, **_result_body(result)})


@books_bp.route('', methods=['POST'])
def create_or_update_book():
    """Reconcile a book and its pricing and write the outcome."""
    service = get_service()
    parsed, error = _read_record_payload(service)
    if error:
        return jsonify({'success': False, 'error': error}), 400

    book, pricing, policy = parsed
    try:
        result = service.apply(book, pricing, policy)
    except RowProcessingError as e:
        return jsonify({
            'success': False,
            'error': str(e),
            'rollbackFailed': e.rollback_failed,
        }), 500
    except CatalogStoreError as e:
        logger.error("Book write failed", title=book.title, error=str(e))
        return jsonify({'success': False, 'error': str(e)}), 500

    body = _result_body(result)
    body['book'] = result.book.to_dict() if result.book else None
    body['pricingRecord'] = result.pricing_record.to_dict() if result.pricing_record else None

    if result.action == Action.FLAG_CONFLICT:
        return jsonify({'success': False, **body}), 409
    if result.action == Action.INSERT_BOOK_AND_PRICING:
        return jsonify({'success': True, **body}), 201
    return jsonify({'success': True, **body})


@books_bp.route('', methods=['GET'])
def get_books():
    """List books with pagination, filters and pricing."""
    page = max(request.args.get('page', 1, type=int) or 1, 1)
    limit = max(request.args.get('limit', 10, type=int) or 10, 1)

    filters = {
        'title': request.args.get('title'),
        'author': request.args.get('author'),
        'isbn': request.args.get('isbn'),
        'year': request.args.get('year', type=int),
        'classification': request.args.get('classification'),
        'publisher_name': request.args.get('publisher_name'),
    }

    store = get_service().store
    try:
        books, total = store.list_books(filters, page=page, limit=limit)
        pricing = store.list_pricing([b.id for b in books])
    except CatalogStoreError as e:
        logger.error("Failed to list books", error=str(e))
        return jsonify({'success': False, 'error': str(e)}), 500

    items = []
    for book in books:
        item = book.to_dict()
        item['pricing'] = [p.to_dict() for p in pricing.get(book.id, [])]
        # Primary price for display
        item['price'] = item['pricing'][0]['rate'] if item['pricing'] else None
        items.append(item)

    total_pages = (total + limit - 1) // limit
    skip = (page - 1) * limit
    return jsonify({
        'success': True,
        'books': items,
        'pagination': {
            'totalBooks': total,
            'currentPage': page,
            'totalPages': total_pages,
            'hasNextPage': page < total_pages,
            'hasPrevPage': page > 1,
            'showing': {
                'from': skip + 1,
                'to': min(skip + limit, total),
                'total': total,
            },
        },
        'filters': filters,
    })


@books_bp.route('/<int:book_id>/pricing', methods=['GET'])
def get_book_pricing(book_id):
    """Get all pricing for a book with summary statistics."""
    store = get_service().store
    book = store.get_book(book_id)
    if not book:
        return jsonify({'success': False, 'error': 'Book not found.'}), 404

    pricing = store.list_pricing([book_id])[book_id]
    rates = [p.rate for p in pricing if p.rate is not None]
    statistics = {
        'totalSources': len(pricing),
        'averageRate': sum(rates) / len(rates) if rates else 0,
        'minRate': min(rates) if rates else 0,
        'maxRate': max(rates) if rates else 0,
        'averageDiscount': sum(p.discount or 0 for p in pricing) / len(pricing) if pricing else 0,
    }

    return jsonify({
        'success': True,
        'book': book.to_dict(),
        'pricing': [p.to_dict() for p in pricing],
        'statistics': statistics,
        'message': 'No pricing information found for this book.' if not pricing
        else f'Found {len(pricing)} pricing source(s).',
    })


@books_bp.route('/<int:book_id>', methods=['DELETE'])
def delete_book(book_id):
    """Delete a book and all its pricing."""
    store = get_service().store
    book = store.get_book(book_id)
    if not book:
        return jsonify({'success': False, 'error': 'Book not found.'}), 404

    deleted_pricing = store.delete_pricing_by_book(book_id)
    store.delete_book(book_id)
    logger.info("Deleted book", book_id=book_id, pricing_deleted=deleted_pricing)

    return jsonify({
        'success': True,
        'message': 'Book and all associated pricing data deleted successfully.',
        'deletedBook': {'id': book.id, 'title': book.title, 'author': book.author, 'isbn': book.isbn},
        'deletedPricingCount': deleted_pricing,
    })


@books_bp.route('/pricing/<int:pricing_id>', methods=['DELETE'])
def delete_book_pricing(pricing_id):
    """Delete one pricing record."""
    store = get_service().store
    pricing = store.get_pricing(pricing_id)
    if not pricing:
        return jsonify({'success': False, 'error': 'Pricing record not found.'}), 404

    store.delete_pricing(pricing_id)
    remaining = len(store.list_pricing([pricing.book_id])[pricing.book_id])

    return jsonify({
        'success': True,
        'message': 'Pricing record deleted successfully.',
        'deletedPricing': pricing.to_dict(),
        'remainingPricingCount': remaining,
        'hasOtherPricingSources': remaining > 0,
    })


@books_bp.route('/bulk', methods=['DELETE'])
def delete_multiple_books():
    """Delete several books and their pricing; failures are reported per id."""
    payload = request.get_json(silent=True) or {}
    book_ids = payload.get('bookIds')
    if not isinstance(book_ids, list) or not book_ids:
        return jsonify({
            'success': False,
            'error': 'Request body must include a non-empty array of bookIds.'
        }), 400

    store = get_service().store
    results = []
    errors = []
    deleted_pricing_total = 0

    for book_id in book_ids:
        if not isinstance(book_id, int) or isinstance(book_id, bool):
            errors.append({'bookId': book_id, 'error': 'Invalid book ID format.'})
            continue
        try:
            book = store.get_book(book_id)
            if not book:
                errors.append({'bookId': book_id, 'error': 'Book not found.'})
                continue
            deleted_pricing = store.delete_pricing_by_book(book_id)
            store.delete_book(book_id)
        except CatalogStoreError as e:
            errors.append({'bookId': book_id, 'error': str(e)})
            continue

        deleted_pricing_total += deleted_pricing
        results.append({
            'bookId': book_id,
            'deletedBook': {'id': book.id, 'title': book.title, 'author': book.author, 'isbn': book.isbn},
            'deletedPricingCount': deleted_pricing,
        })

    return jsonify({
        'success': True,
        'message': f'Bulk delete completed. Deleted {len(results)} books and '
                   f'{deleted_pricing_total} pricing records.',
        'results': results,
        'errors': errors,
    })
