# Client classes for external services
# Import directly from individual modules as needed

__all__ = [
    'S3Client', 'S3ClientInterface'
]
