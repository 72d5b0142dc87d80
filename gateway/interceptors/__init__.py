"""gateway.interceptors — REQUEST interceptor handlers and their shared envelope."""
