"""
Catalog read routes for Manga Sync Service.
"""

from flask import Blueprint, Response, jsonify, request, stream_with_context
from sqlalchemy import String, cast, or_

from manga_sync.api.image_proxy import ProxyDeniedError, UpstreamFetchError
from manga_sync.db.models import Chapter, Manga
from manga_sync.sync.pages import ChapterNotFoundError, PagesUnavailableError
from manga_sync.utils.logging import get_logger
from manga_sync.web.routes.api import get_services

logger = get_logger(__name__)

manga_bp = Blueprint('manga', __name__, url_prefix='/api/manga')

SORTS = {
    'rating': Manga.rating.desc(),
    'latest': Manga.updated_at.desc(),
    'chapters': Manga.total_chapters.desc(),
    'title': Manga.title.asc(),
}
SEARCH_LIMIT = 10


@manga_bp.route('')
def list_manga():
    """Paginated catalog listing."""
    page = max(request.args.get('page', 1, type=int), 1)
    limit = min(max(request.args.get('limit', 20, type=int), 1), 100)
    genre = request.args.get('genre')
    status = request.args.get('status')
    sort = SORTS.get(request.args.get('sort', 'rating'), SORTS['rating'])

    with get_services().database.session() as session:
        query = session.query(Manga)
        if genre:
            query = query.filter(cast(Manga.genre, String).like(f'%"{genre}"%'))
        if status:
            query = query.filter(Manga.status == status)

        total = query.count()
        items = query.order_by(sort, Manga.id.asc()).offset((page - 1) * limit).limit(limit).all()

        return jsonify({
            'success': True,
            'data': [m.to_dict() for m in items],
            'pagination': {
                'page': page,
                'limit': limit,
                'total': total,
                'pages': -(-total // limit),
            },
        })


@manga_bp.route('/search')
def search():
    """Search the local catalog, falling back to a live MangaDex search."""
    q = (request.args.get('q') or '').strip()
    if not q:
        return jsonify({'success': False, 'message': 'Query required'}), 400

    services = get_services()
    pattern = f'%{q}%'

    with services.database.session() as session:
        local = session.query(Manga).filter(or_(
            Manga.title.ilike(pattern),
            cast(Manga.alternative_titles, String).ilike(pattern),
            Manga.author.ilike(pattern),
        )).limit(SEARCH_LIMIT).all()

        if local:
            return jsonify({'success': True, 'data': [m.to_dict() for m in local], 'source': 'local'})

    try:
        remote = services.client.search_manga(q, SEARCH_LIMIT)
    except Exception as e:
        logger.error("Live search failed", query=q, error=str(e))
        return jsonify({'success': False, 'message': 'Search failed', 'detail': str(e)}), 502

    return jsonify({'success': True, 'data': [r.to_dict() for r in remote], 'source': 'mangadex-live'})


@manga_bp.route('/<int:manga_id>')
def get_manga(manga_id):
    with get_services().database.session() as session:
        manga = session.get(Manga, manga_id)
        if manga is None:
            return jsonify({'success': False, 'message': 'Manga not found'}), 404
        return jsonify({'success': True, 'data': manga.to_dict()})


@manga_bp.route('/<int:manga_id>/chapters')
def get_chapters(manga_id):
    """Chapters of a title in reading order, without page lists."""
    with get_services().database.session() as session:
        chapters = session.query(Chapter).filter(
            Chapter.manga_id == manga_id
        ).order_by(Chapter.chapter_number.asc()).all()

        return jsonify({'success': True, 'data': [c.to_dict() for c in chapters]})


@manga_bp.route('/chapters/<int:chapter_id>')
def get_chapter_pages(chapter_id):
    """Chapter metadata with freshly resolved pages."""
    try:
        chapter_pages = get_services().pages.get_chapter_pages(chapter_id)
    except ChapterNotFoundError:
        return jsonify({'success': False, 'message': 'Chapter not found'}), 404
    except PagesUnavailableError:
        return jsonify({'success': False, 'message': 'Pages unavailable'}), 502

    return jsonify({'success': True, 'data': chapter_pages.to_dict()})


@manga_bp.route('/proxy')
def proxy_image():
    """Relay a MangaDex image after the proxy gate allows it."""
    url = request.args.get('url')
    if not url:
        return jsonify({'success': False, 'message': 'url query param required'}), 400

    try:
        image = get_services().proxy.fetch(url)
    except ProxyDeniedError as e:
        return jsonify({'success': False, 'message': 'Domain not allowed', 'reason': e.reason}), 403
    except UpstreamFetchError as e:
        logger.error("Proxy failed", url=url, status=e.status_code, code=e.code, error=e.message)
        return jsonify({
            'success': False,
            'message': 'Failed to proxy image',
            'detail': e.message,
            'status': e.status_code,
            'code': e.code,
        }), 502

    response = Response(stream_with_context(image.chunks), content_type=image.content_type)
    response.headers['Cache-Control'] = 'public, max-age=86400'
    response.headers['Access-Control-Allow-Origin'] = '*'
    response.call_on_close(image.close)
    return response
