"""
Editor.js content helpers.

Article bodies are stored as an Editor.js document:

    {"time": 1700000000000, "blocks": [{"id", "type", "data"}], "version": "2.28.2"}
"""

import time
from html import escape

from bassac.core.helpers import to_base36
from bassac.core.sanitize import sanitize_html, strip_html

EDITOR_VERSION = '2.28.2'

ALLOWED_BLOCK_TYPES = {
    'paragraph', 'header', 'list', 'image', 'quote', 'code', 'delimiter', 'table',
    'embed', 'raw', 'checklist', 'warning', 'linkTool', 'attaches',
}

TEXT_BLOCKS = ('paragraph', 'header', 'quote', 'warning')


def _now_ms():
    return int(time.time() * 1000)


def _list_item_text(item):
    """List items are plain strings or nested-list dicts with a 'content' key"""
    if isinstance(item, dict):
        return item.get('content') or ''
    return item if isinstance(item, str) else ''


def _sanitize_list_item(item):
    if isinstance(item, dict):
        cleaned = dict(item, content=sanitize_html(item.get('content') or ''))
        if isinstance(item.get('items'), list):
            cleaned['items'] = [_sanitize_list_item(child) for child in item['items']]
        return cleaned
    return sanitize_html(item if isinstance(item, str) else '')


def _sanitize_block_data(block_type, data):
    if block_type in TEXT_BLOCKS:
        if data.get('text'):
            data['text'] = sanitize_html(data['text'])
        if data.get('caption'):
            data['caption'] = sanitize_html(data['caption'])
    elif block_type == 'list' and isinstance(data.get('items'), list):
        data['items'] = [_sanitize_list_item(item) for item in data['items']]
    elif block_type == 'checklist' and isinstance(data.get('items'), list):
        data['items'] = [
            dict(item, text=sanitize_html(item.get('text') or '')) if isinstance(item, dict)
            else {'text': sanitize_html(str(item or ''))}
            for item in data['items']
        ]
    elif block_type == 'table' and isinstance(data.get('content'), list):
        data['content'] = [
            [sanitize_html(cell if isinstance(cell, str) else str(cell or '')) for cell in row]
            if isinstance(row, list) else []
            for row in data['content']
        ]

    if block_type == 'paragraph' and not isinstance(data.get('text'), str):
        data['text'] = ''
    return data


def sanitize_editor_content(content):
    """Normalise and sanitize an Editor.js document"""
    if not isinstance(content, dict):
        content = {}

    now_key = to_base36(_now_ms())
    blocks = []
    source_blocks = content.get('blocks') if isinstance(content.get('blocks'), list) else []

    for index, block in enumerate(source_blocks):
        if not isinstance(block, dict):
            continue

        block_type = block.get('type') if block.get('type') in ALLOWED_BLOCK_TYPES else 'paragraph'
        data = dict(block['data']) if isinstance(block.get('data'), dict) else {}
        block_id = block.get('id')
        if not isinstance(block_id, str) or not block_id.strip():
            block_id = f"blk-{now_key}-{index}"

        blocks.append(dict(block, id=block_id, type=block_type, data=_sanitize_block_data(block_type, data)))

    return dict(
        content,
        blocks=blocks,
        time=content['time'] if isinstance(content.get('time'), (int, float)) else _now_ms(),
        version=content.get('version') or EDITOR_VERSION,
    )


def has_blocks(content):
    return isinstance(content, dict) and isinstance(content.get('blocks'), list) and len(content['blocks']) > 0


def _block_words(block):
    data = block.get('data') or {}
    block_type = block.get('type')
    if block_type in ('paragraph', 'header', 'quote'):
        return [data.get('text') or '']
    if block_type == 'list':
        return [_list_item_text(item) for item in data.get('items') or []]
    if block_type == 'checklist':
        return [(item or {}).get('text') or '' for item in data.get('items') or [] if isinstance(item, dict)]
    if block_type == 'table':
        return [str(cell or '') for row in data.get('content') or [] if isinstance(row, list) for cell in row]
    return []


def count_words(content):
    if not has_blocks(content):
        return 0
    text = ' '.join(part for block in content['blocks'] for part in _block_words(block))
    return len(strip_html(text).split())


def get_plain_text(content):
    if not has_blocks(content):
        return ''

    lines = []
    for block in content['blocks']:
        data = block.get('data') or {}
        if block.get('type') in ('paragraph', 'header'):
            lines.append(data.get('text') or '')
        elif block.get('type') == 'quote':
            lines.append(f"\"{data.get('text') or ''}\"")
        elif block.get('type') == 'list':
            lines.extend(f"• {_list_item_text(item)}" for item in data.get('items') or [])

    return strip_html('\n'.join(lines)).strip()


def build_video_content(excerpt='', title='', video_url=''):
    """Fallback body for video posts with no content: summary paragraph plus a link"""
    key = to_base36(_now_ms())
    summary = excerpt or title or 'Video post'
    link = ''
    if video_url:
        url = escape(video_url, quote=True)
        link = f'<a href="{url}" target="_blank" rel="noopener noreferrer">{url}</a>'

    return {
        'time': _now_ms(),
        'blocks': [
            {'id': f"video-summary-{key}", 'type': 'paragraph', 'data': {'text': summary}},
            {'id': f"video-link-{key}", 'type': 'paragraph', 'data': {'text': link}},
        ],
        'version': EDITOR_VERSION,
    }


def truncate_blocks(content, max_blocks=3):
    """First max_blocks blocks of a document (paywall preview)"""
    if not has_blocks(content):
        return content
    return dict(content, blocks=content['blocks'][:max_blocks])
