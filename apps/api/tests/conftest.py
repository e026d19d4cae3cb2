import os

os.environ.setdefault("SUPABASE_URL", "http://localhost:54321")
os.environ.setdefault("SUPABASE_ANON_KEY", "test-anon-key")
os.environ.setdefault("SUPABASE_SERVICE_ROLE_KEY", "test-service-role-key")
os.environ.setdefault("OAUTH_STATE_SECRET", "test-state-secret")
os.environ.setdefault("APP_URL", "http://localhost:3000")
os.environ.setdefault("GARMIN_CONSUMER_KEY", "test-consumer-key")
os.environ.setdefault("GARMIN_CONSUMER_SECRET", "test-consumer-secret")
