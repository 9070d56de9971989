"""
Domain errors raised by the services and turned into flashed messages by the routes.
Each carries the text shown to the user.
"""


class DomainError(Exception):
    """Base class; ``message`` is safe to show to end users."""

    default_message = 'Terjadi kesalahan. Silakan coba lagi.'

    def __init__(self, message=None):
        self.message = message or self.default_message
        super().__init__(self.message)


class OrderNotFound(DomainError):
    default_message = 'Pesanan tidak ditemukan'


class StageError(DomainError):
    """Conflicts in the stage claim machine; the request changed nothing."""


class StageAlreadyCompleted(StageError):
    def __init__(self, stage_label, order_number):
        super().__init__(f'Tahap {stage_label} untuk pesanan {order_number} sudah selesai')


class StageLockedByOther(StageError):
    def __init__(self, stage_label, order_number, holder_name):
        self.holder_name = holder_name
        super().__init__(
            f'Tahap {stage_label} untuk pesanan {order_number} sedang dikerjakan oleh {holder_name}'
        )


class StageNotClaimed(StageError):
    def __init__(self, stage_label, order_number):
        super().__init__(
            f'Anda belum mengambil tahap {stage_label} untuk pesanan {order_number}'
        )


class StageNotApplicable(StageError):
    def __init__(self, stage_label, order_number):
        super().__init__(f'Tahap {stage_label} tidak berlaku untuk pesanan {order_number}')


class StageNotReady(StageError):
    def __init__(self, stage_label, order_number, status_label):
        self.status_label = status_label
        super().__init__(
            f'Tahap {stage_label} belum bisa dikerjakan, status pesanan {order_number}: {status_label}'
        )


class ValidationFailed(DomainError):
    """Bad input; ``errors`` maps field names to messages."""

    default_message = 'Data yang dikirim tidak valid'

    def __init__(self, errors, message=None):
        self.errors = dict(errors)
        super().__init__(message)


class InvalidStatusTransition(DomainError):
    default_message = 'Status pesanan tidak memungkinkan tindakan ini'


class RateLimitExceeded(DomainError):
    default_message = 'Terlalu banyak percobaan. Silakan coba lagi nanti.'

    def __init__(self, key, retry_after_seconds, message=None):
        self.key = key
        self.retry_after_seconds = retry_after_seconds
        super().__init__(message)


class PaymentError(DomainError):
    default_message = 'Gagal membuat transaksi. Silakan coba lagi.'


class PhotoStorageError(DomainError):
    default_message = 'Foto gagal disimpan. Silakan coba lagi.'
