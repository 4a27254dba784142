"""Gate server: players, zone and login server clients, account storage and the client-facing server."""