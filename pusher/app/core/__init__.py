SERVICE_NAME = "pusher"
