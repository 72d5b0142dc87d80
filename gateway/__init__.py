"""
gateway — Gateway REQUEST interceptors.

hmac_interceptor:    verifies the X-Hmac-Signature of the raw request body.
request_interceptor: tokenizes PCI objects in request bodies before they
                     reach the backend (library: tokenization).
"""
