"""
Inverter Bridge Services

Layered service architecture:
1. Device Service - Modbus connection, register reads
2. Observation Service - Polling cycle, snapshots, callbacks
3. Delivery Service - Bounded per-topic queues
4. Transport Service - MQTT connection and publishing
"""
