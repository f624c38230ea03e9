SERVICE_NAME = "reader"
