"""
School ERP portal.

Server-rendered pages in front of the ERP REST backend: student records with
course / batch / fee cascades, feedback moderation, attendance reports, exam
mark entry and login. Configuration comes from the environment (.env is loaded
by create_app), see erp_portal.load_config for the keys.
"""
import os

from erp_portal import create_app

app = create_app()

# Run app
if __name__ == '__main__':
    port = int(os.environ.get("PORT", 10000))
    app.run(host='0.0.0.0', port=port, debug=True)
