"""Request parsing helpers shared by the blueprints."""
import re

from flask import flash, request

SHOE_KEY = re.compile(r'^shoes-(\d+)-')


def page_arg():
    page = request.args.get('page', 1, type=int)
    return page if page and page > 0 else 1


def client_ip():
    # ProxyFix has already applied X-Forwarded-For
    return request.remote_addr or 'unknown'


def flash_validation(error):
    """Flash a ValidationFailed: one general line plus one entry per field."""
    flash(error.message, 'validation_errors')
    for field, message in error.errors.items():
        flash(f"{field}: {message}", 'validation_errors')


def _int_list(values):
    ids = []
    for value in values:
        try:
            ids.append(int(value))
        except (TypeError, ValueError):
            continue
    return ids


def parse_shoes(form):
    """
    Build ShoeInput objects from ``shoes-<n>-<field>`` form keys.

    ``services`` and ``additional_services`` are multi-valued.
    """
    from services_stage_claims import ShoeInput

    indexes = sorted({int(m.group(1)) for key in form.keys() for m in [SHOE_KEY.match(key)] if m})
    shoes = []
    for i in indexes:
        prefix = f'shoes-{i}-'
        shoes.append(ShoeInput(
            brand=form.get(prefix + 'brand', ''),
            size=form.get(prefix + 'size', ''),
            type=form.get(prefix + 'type', ''),
            material=form.get(prefix + 'material', ''),
            category=form.get(prefix + 'category', ''),
            condition=form.get(prefix + 'condition', ''),
            note=(form.get(prefix + 'note') or '').strip() or None,
            services=_int_list(form.getlist(prefix + 'services')),
            additional_services=_int_list(form.getlist(prefix + 'additional_services')),
        ))
    return shoes
