
# ------------------------------------------
# Event types (routing keys)
# ------------------------------------------
EVENT_ORDER_CREATED             = "order.created"              # Order service placed a new PENDING order
EVENT_ORDER_CANCELLED           = "order.cancelled"            # Order service cancelled a PENDING order, inventory restocks
EVENT_INVENTORY_STATUS_UPDATED  = "inventory.status.updated"   # Inventory service reports SUCCESS/FAILURE for an order
EVENT_ORDER_STATUS_UPDATED      = "order.status.updated"       # Order service reports CONFIRMED/CANCELLED

ROUTING_KEYS = (
    EVENT_ORDER_CREATED,
    EVENT_ORDER_CANCELLED,
    EVENT_INVENTORY_STATUS_UPDATED,
    EVENT_ORDER_STATUS_UPDATED,
)

EVENT_VERSION = "1.0"

# ------------------------------------------
# Outcome statuses
# ------------------------------------------
INVENTORY_SUCCESS   = "SUCCESS"
INVENTORY_FAILURE   = "FAILURE"

ORDER_PENDING       = "PENDING"
ORDER_CONFIRMED     = "CONFIRMED"
ORDER_CANCELLED     = "CANCELLED"

# ------------------------------------------
# Services and their queues
# ------------------------------------------
ORDER_SERVICE           = "order-service"
INVENTORY_SERVICE       = "inventory-service"
NOTIFICATION_SERVICE    = "notification-service"

ORDER_QUEUE             = "orders_queue"
ORDER_DLQ               = "orders_queue_dlq"
INVENTORY_QUEUE         = "inventory_queue"
INVENTORY_DLQ           = "inventory_queue_dlq"
NOTIFICATION_QUEUE      = "notification_main_queue"
NOTIFICATION_DLQ        = "notification_dlq"

# service -> (work queue, dead-letter queue, bindings)
SERVICE_QUEUES = {
    ORDER_SERVICE:          (ORDER_QUEUE, ORDER_DLQ, (EVENT_INVENTORY_STATUS_UPDATED,)),
    INVENTORY_SERVICE:      (INVENTORY_QUEUE, INVENTORY_DLQ, (EVENT_ORDER_CREATED, EVENT_ORDER_CANCELLED)),
    NOTIFICATION_SERVICE:   (NOTIFICATION_QUEUE, NOTIFICATION_DLQ, (EVENT_INVENTORY_STATUS_UPDATED,)),
}

# ------------------------------------------
# Message headers
# ------------------------------------------
HEADER_EVENT_ID             = "event-id"
HEADER_EVENT_TYPE           = "event-type"
HEADER_DEATH_QUEUE          = "x-death-queue"
HEADER_DEATH_EXCHANGE       = "x-death-exchange"
HEADER_DEATH_REASON         = "x-death-reason"
HEADER_ORIGINAL_TOPIC       = "x-original-topic"
HEADER_DEATH_ERROR          = "x-death-error"
HEADER_DEATH_TIMESTAMP      = "x-death-timestamp"
HEADER_REPLAYED             = "x-replayed"
HEADER_REPLAY_TIMESTAMP     = "x-replay-timestamp"
