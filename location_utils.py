"""
Service-area checks for customer addresses.

The area is not a circle: couriers cover further north and east of the store
than south and west, so each compass direction has its own limit.
"""
import re
from math import radians, cos, sin, asin, sqrt

from config_payments import SERVICE_CENTER_LATITUDE, SERVICE_CENTER_LONGITUDE

# Limits in metres from the service centre, per direction
DIRECTION_LIMITS_METERS = {
    'north': 30000,
    'south': 10000,
    'east': 30000,
    'west': 20000,
}

MAX_ADDRESS_RADIUS_METERS = 40000

NAME_PATTERN = re.compile(r'^[A-Za-z][A-Za-z \-]*$')
PHONE_PATTERN = re.compile(r'^\d{10,13}$')


def calculate_distance(lat1, lon1, lat2, lon2):
    """
    Calculate the great circle distance between two points
    on the earth (specified in decimal degrees)

    Returns distance in meters
    """
    try:
        lon1, lat1, lon2, lat2 = map(radians, [lon1, lat1, lon2, lat2])

        # Haversine formula
        dlon = lon2 - lon1
        dlat = lat2 - lat1
        a = sin(dlat / 2) ** 2 + cos(lat1) * cos(lat2) * sin(dlon / 2) ** 2
        c = 2 * asin(sqrt(a))
        return c * 6371000
    except (TypeError, ValueError) as e:
        raise ValueError(f"Invalid coordinates: {str(e)}")


def directional_offsets(latitude, longitude,
                        center_lat=SERVICE_CENTER_LATITUDE, center_lon=SERVICE_CENTER_LONGITUDE):
    """North/south and east/west offsets of a point from the centre, in metres."""
    ns = calculate_distance(center_lat, center_lon, latitude, center_lon)
    ew = calculate_distance(center_lat, center_lon, center_lat, longitude)
    return {
        'north': ns if latitude > center_lat else 0.0,
        'south': ns if latitude < center_lat else 0.0,
        'east': ew if longitude > center_lon else 0.0,
        'west': ew if longitude < center_lon else 0.0,
    }


def validate_service_area(latitude, longitude, radius=None,
                          center_lat=SERVICE_CENTER_LATITUDE, center_lon=SERVICE_CENTER_LONGITUDE):
    """
    Check a location against the directional limits.

    Returns dict with 'valid': bool and 'message': str. A store address
    (radius 0) always passes.
    """
    if radius == 0:
        return {'valid': True, 'message': 'Alamat toko'}
    try:
        offsets = directional_offsets(float(latitude), float(longitude), center_lat, center_lon)
    except (TypeError, ValueError) as e:
        return {'valid': False, 'message': f'Koordinat tidak valid: {str(e)}'}

    for direction, limit in DIRECTION_LIMITS_METERS.items():
        if offsets[direction] > limit:
            return {
                'valid': False,
                'message': (
                    f'Lokasi berada {offsets[direction] / 1000:.1f} km ke arah {direction}, '
                    f'batas layanan {limit / 1000:.0f} km'
                ),
            }
    return {'valid': True, 'message': 'Lokasi dalam jangkauan layanan'}


def validate_address_form(form):
    """
    Validate a submitted address (dict-like). Returns ``(cleaned, errors)``;
    ``errors`` maps field name to message and is empty when the address is usable.
    """
    errors = {}
    cleaned = {
        'name': (form.get('name') or '').strip(),
        'phone': (form.get('phone') or '').strip(),
        'street': (form.get('street') or '').strip(),
        'note': (form.get('note') or '').strip() or None,
    }

    if not cleaned['name'] or len(cleaned['name']) > 50 or not NAME_PATTERN.match(cleaned['name']):
        errors['name'] = 'Nama harus 1-50 huruf, spasi, atau tanda hubung'
    if not PHONE_PATTERN.match(cleaned['phone']):
        errors['phone'] = 'Nomor telepon harus 10-13 digit angka'
    if not cleaned['street'] or len(cleaned['street']) > 255:
        errors['street'] = 'Nama jalan harus diisi (maksimal 255 karakter)'
    if cleaned['note'] and len(cleaned['note']) > 255:
        errors['note'] = 'Catatan maksimal 255 karakter'

    for field, low, high in (('latitude', -90, 90), ('longitude', -180, 180)):
        try:
            value = float(form.get(field))
        except (TypeError, ValueError):
            errors[field] = f'{field} harus berupa angka'
            continue
        if not low <= value <= high:
            errors[field] = f'{field} harus di antara {low} dan {high}'
        cleaned[field] = value

    try:
        radius = int(float(form.get('radius')))
        if radius <= 0 or radius > MAX_ADDRESS_RADIUS_METERS:
            errors['radius'] = f'Radius harus di antara 1 dan {MAX_ADDRESS_RADIUS_METERS}'
        cleaned['radius'] = radius
    except (TypeError, ValueError):
        errors['radius'] = 'Radius harus berupa angka'

    if 'latitude' not in errors and 'longitude' not in errors and 'radius' not in errors:
        area = validate_service_area(cleaned['latitude'], cleaned['longitude'], cleaned['radius'])
        if not area['valid']:
            errors['location'] = area['message']

    return cleaned, errors
