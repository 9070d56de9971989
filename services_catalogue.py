"""Cleaning services offered at inspection and their prices (rupiah)."""
import logging

from models import Service

logger = logging.getLogger(__name__)

SERVICE_TYPES = ('primary', 'additional', 'start_from')

DEFAULT_SERVICES = [
    ('Premium For Suede', 'Perawatan khusus sepatu suede agar warna dan teksturnya kembali.', 120000, 'start_from'),
    ('Mild', 'Pencucian bagian luar dan dalam untuk menjaga sepatu tetap bersih.', 60000, 'primary'),
    ('Medium', 'Pencucian luar dan dalam untuk noda ringan.', 65000, 'primary'),
    ('Hard', 'Pencucian luar dan dalam untuk noda berat.', 70000, 'primary'),
    ('Kids Shoes', 'Pencucian sepatu anak.', 40000, 'start_from'),
    ('Just For Her', 'Pencucian sepatu wanita (flat shoes, heels, wedges, flip flops).', 45000, 'primary'),
    ('Unyellowing', 'Menghilangkan warna kuning.', 30000, 'start_from'),
    ('White Shoes / Mummy', 'Tambahan perawatan khusus sepatu putih.', 10000, 'additional'),
    ('Nubuck Suede', 'Tambahan perawatan khusus nubuck suede.', 10000, 'additional'),
    ('One Day Service', 'Pencucian selesai dalam satu hari.', 10000, 'additional'),
]


def seed_default_services(session):
    """Insert any default service missing by name."""
    existing = {name for (name,) in session.query(Service.name).all()}
    added = 0
    for name, description, price, service_type in DEFAULT_SERVICES:
        if name in existing:
            continue
        session.add(Service(name=name, description=description, price=price, type=service_type))
        added += 1
    session.commit()
    logger.info(f"Seeded {added} service(s)")
    return added


def list_services(session):
    """Services grouped by type for the inspection form."""
    grouped = {t: [] for t in SERVICE_TYPES}
    for service in session.query(Service).order_by(Service.type, Service.price).all():
        grouped.setdefault(service.type, []).append(service)
    return grouped
