"""Error taxonomy shared by the extractor, the store and the similarity engine."""


class FashionCompareError(Exception):
    pass


class InvalidProductData(FashionCompareError, ValueError):
    """Raised when an extracted record fails the title/price/url gate."""


class StorageReadFailure(FashionCompareError):
    """The host key-value storage rejected or failed a read."""


class StorageWriteFailure(FashionCompareError):
    """The host key-value storage rejected or failed a write or remove."""


class InvalidCandidateData(FashionCompareError, ValueError):
    """A record handed to the similarity engine cannot be scored."""
