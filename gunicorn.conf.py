# gunicorn configuration file
# Run with: gunicorn -c gunicorn.conf.py "afya:create_app('config.ProductionConfig')"

# Server socket
bind = '0.0.0.0:10000'

# Threads matter here: payment status SSE streams hold a worker thread each
workers = 2
worker_class = 'gthread'
threads = 4
worker_connections = 1000
max_requests = 1000
max_requests_jitter = 100

# M-Pesa calls use a 30s timeout, keep the worker timeout above it
timeout = 60
keepalive = 5

# Logging
accesslog = '-'
access_log_format = '%(h)s %(l)s %(u)s %(t)s "%(r)s" %(s)s %(b)s "%(f)s" "%(a)s" %(L)s'
errorlog = '-'
loglevel = 'info'
capture_output = True

# Process naming
proc_name = 'afya-connect'

reload = False
