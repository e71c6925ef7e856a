# routers — HTTP endpoints
