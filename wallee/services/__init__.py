"""
Wallee Controller Services

- Device Service - Meter (HTTP) and charging station (Modbus TCP) I/O
- Control Service - Policies and the charging current control loop
- Price Service - Day-ahead price fetching
- Notification Service - Publishing iteration outcomes
"""
