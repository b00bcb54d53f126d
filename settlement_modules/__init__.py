"""
Settlement modules -- the public write API of the settlement engine.

Each subpackage owns one business area and exposes a single service class
whose public methods are complete units of work:

    containers   ContainerService   containers, stock lines, manual stock
    expenses     ExpenseService     container expenses and corrections
    investments  InvestmentService  capital, payable balance, payouts
    sales        SalesService       sales, payments, returns, exchanges
    inventory    InventoryService   warehouse counts and confirmation codes

Modules compose kernel services (period gate, audit, document numbers),
the pure engines and ``settlement_services.recompute``.  They never import
each other's internals except through the service classes.
"""
