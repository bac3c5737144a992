"""
Ops Routes
==========

Health checks. Every probe reports its own failure in the payload instead of
raising, so /health always answers.
"""

import os
import platform
import shutil
import sqlite3
import time

from flask import jsonify

from bassac.core.cache import cache
from bassac.core.database import Database
from bassac.core.helpers import now_iso
from . import ops_health_bp

DATABASE_KEYS = ('NEWS_DB', 'USER_DB', 'ANALYTICS_DB', 'SETTINGS_DB')

DISK_WARNING, DISK_CRITICAL = 80, 90
MEMORY_WARNING, MEMORY_CRITICAL = 85, 95

_started = time.time()


def _get_disk_usage(path='/'):
    try:
        usage = shutil.disk_usage(path)
        return {
            'total_gb': round(usage.total / (1024 ** 3), 1),
            'used_gb': round(usage.used / (1024 ** 3), 1),
            'free_gb': round(usage.free / (1024 ** 3), 1),
            'percent': round((usage.used / usage.total) * 100, 1),
        }
    except OSError as e:
        return {'total_gb': 0, 'used_gb': 0, 'free_gb': 0, 'percent': 0, 'error': str(e)}


def _get_memory_info():
    """Memory from /proc/meminfo; zeros where it is unavailable (non-Linux)"""
    try:
        with open('/proc/meminfo', 'r') as f:
            mem = {}
            for line in f:
                parts = line.split()
                if len(parts) >= 2:
                    mem[parts[0].rstrip(':')] = int(parts[1])
    except (OSError, ValueError) as e:
        return {'total_mb': 0, 'used_mb': 0, 'available_mb': 0, 'percent': 0, 'note': str(e)}

    total_kb = mem.get('MemTotal', 0)
    available_kb = mem.get('MemAvailable', mem.get('MemFree', 0))
    used_kb = total_kb - available_kb
    return {
        'total_mb': round(total_kb / 1024, 1),
        'used_mb': round(used_kb / 1024, 1),
        'available_mb': round(available_kb / 1024, 1),
        'percent': round((used_kb / total_kb) * 100, 1) if total_kb else 0,
    }


def _format_duration(seconds):
    days = int(seconds // 86400)
    hours = int((seconds % 86400) // 3600)
    minutes = int((seconds % 3600) // 60)
    return f'{days}d {hours}h {minutes}m'


def _get_uptime():
    process_seconds = time.time() - _started
    result = {'process_seconds': round(process_seconds), 'process': _format_duration(process_seconds)}
    try:
        with open('/proc/uptime', 'r') as f:
            system_seconds = float(f.read().split()[0])
        result.update({'system_seconds': round(system_seconds), 'system': _format_duration(system_seconds)})
    except (OSError, ValueError, IndexError):
        result.update({'system_seconds': None, 'system': 'unknown'})
    return result


def _check_databases():
    results = {}
    for key in DATABASE_KEYS:
        path = Database.path(key)
        started = time.time()
        try:
            with Database.connect(path) as conn:
                conn.execute('SELECT 1')
            results[key] = {'ok': True, 'latency_ms': round((time.time() - started) * 1000, 1)}
        except sqlite3.Error as e:
            results[key] = {'ok': False, 'error': str(e)}
    return results


def _compute_status(disk, memory, databases, cache_info):
    """Overall status plus the list of issues found"""
    issues = []
    levels = set()

    def add(level, kind, message):
        issues.append({'type': kind, 'message': message})
        levels.add(level)

    disk_pct = disk.get('percent', 0)
    if disk_pct >= DISK_CRITICAL:
        add('critical', 'disk_critical', f'Disk usage critical: {disk_pct}%')
    elif disk_pct >= DISK_WARNING:
        add('warning', 'disk_warning', f'Disk usage high: {disk_pct}%')

    mem_pct = memory.get('percent', 0)
    if mem_pct >= MEMORY_CRITICAL:
        add('critical', 'memory_critical', f'Memory usage critical: {mem_pct}%')
    elif mem_pct >= MEMORY_WARNING:
        add('warning', 'memory_warning', f'Memory usage high: {mem_pct}%')

    for key, result in databases.items():
        if not result['ok']:
            add('critical', 'database_unavailable', f'{key} unavailable: {result["error"]}')

    if not cache_info.get('connected', False):
        add('warning', 'cache_unavailable', f'{cache_info.get("type", "cache")} cache not connected')

    status = 'critical' if 'critical' in levels else 'warning' if 'warning' in levels else 'ok'
    return status, issues


def build_health_response():
    disk = _get_disk_usage()
    memory = _get_memory_info()
    databases = _check_databases()
    cache_info = cache.stats()
    status, issues = _compute_status(disk, memory, databases, cache_info)

    return {
        'status': status,
        'timestamp': now_iso(),
        'checks': {
            'disk': disk,
            'memory': memory,
            'uptime': _get_uptime(),
            'databases': databases,
            'cache': cache_info,
        },
        'issues': issues,
        'platform': {'python': platform.python_version(), 'pid': os.getpid()},
    }, status


@ops_health_bp.route('/')
@ops_health_bp.route('')
def health_check():
    """Public health endpoint for uptime monitors."""
    data, status = build_health_response()
    return jsonify(data), 503 if status == 'critical' else 200
