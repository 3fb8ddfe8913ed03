#!/usr/bin/env python3
"""CDK app entry point for the e-commerce event topology."""

import os
import aws_cdk as cdk
from stacks.audit_event_bus_stack import AuditEventBusStack
from stacks.ecommerce_api_stack import ECommerceApiStack
from stacks.events_table_stack import EventsTableStack
from stacks.invoice_ws_api_stack import InvoiceWSApiStack
from stacks.orders_application_stack import OrdersApplicationStack
from stacks.product_events_function_stack import ProductEventsFunctionStack
from stacks.products_function_stack import ProductsFunctionStack
from stacks.products_table_stack import ProductsTableStack


app = cdk.App()

env = cdk.Environment(
    account=os.getenv("CDK_DEFAULT_ACCOUNT"),
    region=os.getenv("CDK_DEFAULT_REGION", "us-east-1"),  # Default to us-east-1
)

ecommerce_tags = {"cost": "ECommerce", "team": "ECommerce"}

products_table_stack = ProductsTableStack(app, "ProductsTable", env=env, tags=ecommerce_tags)

events_table_stack = EventsTableStack(app, "EventsTable", env=env, tags=ecommerce_tags)

product_events_function_stack = ProductEventsFunctionStack(
    app,
    "ProductEventsFunction",
    events_table=events_table_stack.table,
    env=env,
    tags=ecommerce_tags,
)
product_events_function_stack.add_dependency(events_table_stack)

products_function_stack = ProductsFunctionStack(
    app,
    "ProductsFunction",
    products_table=products_table_stack.table,
    product_events_function=product_events_function_stack.function,
    env=env,
    tags=ecommerce_tags,
)
products_function_stack.add_dependency(products_table_stack)
products_function_stack.add_dependency(product_events_function_stack)

audit_event_bus_stack = AuditEventBusStack(
    app,
    "AuditEvents",
    env=env,
    tags={"cost": "AuditEvents", "team": "ECommerce"},
)

orders_application_stack = OrdersApplicationStack(
    app,
    "OrdersApplication",
    products_table=products_table_stack.table,
    events_table=events_table_stack.table,
    audit_bus=audit_event_bus_stack.bus,
    env=env,
    tags=ecommerce_tags,
)
orders_application_stack.add_dependency(products_table_stack)
orders_application_stack.add_dependency(events_table_stack)
orders_application_stack.add_dependency(audit_event_bus_stack)

ecommerce_api_stack = ECommerceApiStack(
    app,
    "ECommerceApi",
    products_function=products_function_stack.function,
    orders_function=orders_application_stack.orders_function,
    order_events_fetch_function=orders_application_stack.order_events_fetch_function,
    env=env,
    tags=ecommerce_tags,
)
ecommerce_api_stack.add_dependency(products_function_stack)
ecommerce_api_stack.add_dependency(orders_application_stack)

invoice_ws_api_stack = InvoiceWSApiStack(
    app,
    "InvoiceApi",
    events_table=events_table_stack.table,
    audit_bus=audit_event_bus_stack.bus,
    env=env,
    tags={"cost": "InvoiceApp", "team": "ECommerce"},
)
invoice_ws_api_stack.add_dependency(events_table_stack)
invoice_ws_api_stack.add_dependency(audit_event_bus_stack)

app.synth()
